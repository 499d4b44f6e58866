"""Text and assignment repositories."""

from sqlalchemy import delete, select

from living_tags.db.models import Text, TextTag
from living_tags.db.repositories.base import BaseRepository


class TextRepository(BaseRepository[Text]):
    model = Text

    def list_for_user(self, user_id: str) -> list[Text]:
        """All texts of a user, newest first."""
        stmt = select(Text).where(Text.user_id == user_id).order_by(Text.created_at.desc())
        return list(self.db.scalars(stmt).all())


class TextTagRepository(BaseRepository[TextTag]):
    model = TextTag

    def get_pair(self, text_id: str, tag_id: str) -> TextTag | None:
        """Get assignment by its natural key."""
        stmt = select(TextTag).where(TextTag.text_id == text_id, TextTag.tag_id == tag_id)
        return self.db.scalar(stmt)

    def list_for_user(self, user_id: str, text_id: str | None = None) -> list[TextTag]:
        """Assignments on texts owned by user, optionally for one text."""
        stmt = select(TextTag).join(Text, Text.id == TextTag.text_id).where(Text.user_id == user_id)
        if text_id is not None:
            stmt = stmt.where(TextTag.text_id == text_id)
        return list(self.db.scalars(stmt).all())

    def delete_where(self, text_id: str, source: str) -> int:
        """Bulk delete assignments of one text with the given source."""
        result = self.db.execute(
            delete(TextTag).where(TextTag.text_id == text_id, TextTag.source == source)
        )
        return result.rowcount or 0
