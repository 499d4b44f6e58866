"""Service protocols (interfaces) for swappable backends.

Uses typing.Protocol for structural subtyping (duck typing with type safety).
Implementations don't need to inherit - they just need to have matching methods.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from living_tags.services.tagging.models import (
    Assignment,
    Source,
    TagCandidate,
    TagRecord,
    TextRecord,
)


class PersistenceProtocol(Protocol):
    """Source of record for one user's texts, tags and assignments.

    Implementations: SqlPersistence (direct database access) and
    HttpPersistence (REST API client).
    """

    async def create_text(self, content: str, created_at: datetime | None = None) -> TextRecord:
        """Store a new text. ``created_at`` defaults to now."""
        ...

    async def delete_text(self, text_id: str) -> None:
        """Delete a text and, by cascade, its assignments."""
        ...

    async def list_texts(self) -> list[TextRecord]:
        """All texts, newest first."""
        ...

    async def create_tag(self, name: str) -> TagRecord:
        """Create a tag.

        Raises:
            DuplicateTagNameError: A tag with this name already exists.
        """
        ...

    async def rename_tag(self, tag_id: str, name: str) -> TagRecord:
        """Rename a tag (same duplicate rule as create_tag)."""
        ...

    async def delete_tag(self, tag_id: str) -> None:
        """Delete a tag and, by cascade, its assignments."""
        ...

    async def list_tags(self) -> list[TagRecord]:
        """All tags, ordered by name."""
        ...

    async def list_assignments(self, text_id: str | None = None) -> list[Assignment]:
        """Assignments of one text, or of every text when ``text_id`` is None."""
        ...

    async def upsert_assignment(
        self, text_id: str, tag_id: str, confidence: float, source: Source
    ) -> Assignment:
        """Insert or update the assignment keyed by (text_id, tag_id)."""
        ...

    async def delete_assignment(self, text_id: str, tag_id: str) -> None:
        ...

    async def delete_assignments_where(self, text_id: str, source: Source) -> int:
        """Delete every assignment of a text with the given source."""
        ...

    async def count_assignments_by_tag(self, tag_id: str) -> int:
        ...

    async def count_assignments_by_tags(self) -> dict[str, int]:
        ...


class ClassifierProtocol(Protocol):
    """External text classification service."""

    async def classify(self, text: str, glossary: Sequence[TagRecord]) -> list[TagCandidate]:
        """Suggest tags from the glossary for a text.

        Only ids present in ``glossary`` are returned; an empty list is valid.
        """
        ...
