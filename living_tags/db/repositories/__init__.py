"""Repository layer: user-scoped data access for texts, tags and assignments."""

from living_tags.db.repositories.base import BaseRepository
from living_tags.db.repositories.tag import TagRepository
from living_tags.db.repositories.text import TextRepository, TextTagRepository

__all__ = [
    "BaseRepository",
    "TagRepository",
    "TextRepository",
    "TextTagRepository",
]
