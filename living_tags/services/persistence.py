"""SQL-backed persistence for one user's texts, tags and assignments.

Every query is scoped by ``user_id`` (row-level isolation). Follows the
service transaction rule: each public operation commits on success and
rolls back on failure.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from living_tags.core.exceptions import (
    DuplicateTagNameError,
    EntityNotFound,
    PersistenceError,
    ValidationError,
)
from living_tags.db.models import Tag, Text, TextTag
from living_tags.db.repositories import TagRepository, TextRepository, TextTagRepository
from living_tags.services.glossary import normalize_content, normalize_tag_name
from living_tags.services.tagging.models import (
    SOURCE_AI,
    SOURCE_MANUAL,
    Assignment,
    Source,
    TagRecord,
    TextRecord,
)
from living_tags.services.tagging.reconciliation import guard_ai_write

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _as_utc(value: datetime) -> datetime:
    """Convert to UTC before storing; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def tag_record(tag: Tag) -> TagRecord:
    return TagRecord(id=tag.id, name=tag.name, created_at=_aware(tag.created_at))


def text_record(text: Text) -> TextRecord:
    return TextRecord(id=text.id, content=text.content, created_at=_aware(text.created_at))


def assignment_record(row: TextTag) -> Assignment:
    return Assignment(
        text_id=row.text_id,
        tag_id=row.tag_id,
        confidence=float(row.confidence),
        source=row.source,
    )


class SqlPersistence:
    """PersistenceProtocol implementation over SQLAlchemy repositories."""

    def __init__(self, db: Session, user_id: str) -> None:
        self.db = db
        self.user_id = user_id
        self.texts = TextRepository(db)
        self.tags = TagRepository(db)
        self.assignments = TextTagRepository(db)

    # --- Transactions ---

    def commit(self) -> None:
        """Commit transaction."""
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Database commit failed: {e}") from e

    # --- Lookups ---

    def _get_text(self, text_id: str) -> Text:
        text = self.texts.get_with_filter(text_id, user_id=self.user_id)
        if text is None:
            raise EntityNotFound("Text not found", context={"id": text_id})
        return text

    def _get_tag(self, tag_id: str) -> Tag:
        tag = self.tags.get_with_filter(tag_id, user_id=self.user_id)
        if tag is None:
            raise EntityNotFound("Tag not found", context={"id": tag_id})
        return tag

    # --- Texts ---

    async def create_text(self, content: str, created_at: datetime | None = None) -> TextRecord:
        text = Text(user_id=self.user_id, content=normalize_content(content))
        if created_at is not None:
            text.created_at = _as_utc(created_at)
        self.texts.add(text)
        self.commit()
        self.texts.refresh(text)
        logger.debug("Created text %s", text.id)
        return text_record(text)

    async def get_text(self, text_id: str) -> TextRecord:
        return text_record(self._get_text(text_id))

    async def delete_text(self, text_id: str) -> None:
        self.texts.delete(self._get_text(text_id))
        self.commit()

    async def list_texts(self) -> list[TextRecord]:
        return [text_record(t) for t in self.texts.list_for_user(self.user_id)]

    # --- Tags ---

    def _save_tag(self, tag: Tag, name: str) -> TagRecord:
        try:
            self.commit()
        except IntegrityError as e:
            raise DuplicateTagNameError(
                f'Tag "{name}" already exists', context={"name": name}
            ) from e
        self.tags.refresh(tag)
        return tag_record(tag)

    async def create_tag(self, name: str) -> TagRecord:
        name = normalize_tag_name(name)
        if self.tags.get_by_name(self.user_id, name) is not None:
            raise DuplicateTagNameError(f'Tag "{name}" already exists', context={"name": name})
        tag = self.tags.add(Tag(user_id=self.user_id, name=name))
        return self._save_tag(tag, name)

    async def rename_tag(self, tag_id: str, name: str) -> TagRecord:
        name = normalize_tag_name(name)
        tag = self._get_tag(tag_id)
        existing = self.tags.get_by_name(self.user_id, name)
        if existing is not None and existing.id != tag.id:
            raise DuplicateTagNameError(f'Tag "{name}" already exists', context={"name": name})
        self.tags.partial_update(tag, name=name)
        return self._save_tag(tag, name)

    async def delete_tag(self, tag_id: str) -> None:
        self.tags.delete(self._get_tag(tag_id))
        self.commit()

    async def list_tags(self) -> list[TagRecord]:
        return [tag_record(t) for t in self.tags.list_for_user(self.user_id)]

    # --- Assignments ---

    async def list_assignments(self, text_id: str | None = None) -> list[Assignment]:
        rows = self.assignments.list_for_user(self.user_id, text_id=text_id)
        return [assignment_record(row) for row in rows]

    async def upsert_assignment(
        self, text_id: str, tag_id: str, confidence: float, source: Source
    ) -> Assignment:
        if source not in (SOURCE_AI, SOURCE_MANUAL):
            raise ValidationError(f"Unknown source: {source}")
        if source == SOURCE_MANUAL:
            confidence = 1.0
        try:
            incoming = Assignment(text_id, tag_id, float(confidence), source)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        self._get_text(text_id)
        self._get_tag(tag_id)

        row = self.assignments.get_pair(text_id, tag_id)
        guard_ai_write(assignment_record(row) if row else None, incoming)
        if row is None:
            row = self.assignments.add(
                TextTag(text_id=text_id, tag_id=tag_id, confidence=confidence, source=source)
            )
        else:
            self.assignments.partial_update(row, confidence=confidence, source=source)
        self.commit()
        self.assignments.refresh(row)
        return assignment_record(row)

    async def delete_assignment(self, text_id: str, tag_id: str) -> None:
        self._get_text(text_id)
        row = self.assignments.get_pair(text_id, tag_id)
        if row is None:
            raise EntityNotFound(
                "Assignment not found", context={"text_id": text_id, "tag_id": tag_id}
            )
        self.assignments.delete(row)
        self.commit()

    async def delete_assignments_where(self, text_id: str, source: Source) -> int:
        self._get_text(text_id)
        deleted = self.assignments.delete_where(text_id, source)
        self.commit()
        logger.debug("Deleted %d %s assignments for text %s", deleted, source, text_id)
        return deleted

    async def count_assignments_by_tag(self, tag_id: str) -> int:
        self._get_tag(tag_id)
        return self.assignments.count(tag_id=tag_id)

    async def count_assignments_by_tags(self) -> dict[str, int]:
        return self.tags.usage_counts(self.user_id)
