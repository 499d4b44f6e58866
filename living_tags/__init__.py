"""Living Tags: personal text collection with AI and manual tag assignments."""

__version__ = "0.3.0"
