"""Database models package.

All models are re-exported here so that ``from living_tags.db.models import X``
continues to work.
"""

from living_tags.db.models.base import TimestampMixin, generate_uuid, utcnow
from living_tags.db.models.tag import Tag
from living_tags.db.models.text import Text, TextTag

__all__ = [
    "Tag",
    "Text",
    "TextTag",
    "TimestampMixin",
    "generate_uuid",
    "utcnow",
]
