"""Tag repository."""

from sqlalchemy import func, select

from living_tags.db.models import Tag, TextTag
from living_tags.db.repositories.base import BaseRepository


class TagRepository(BaseRepository[Tag]):
    model = Tag

    def list_for_user(self, user_id: str) -> list[Tag]:
        """All tags of a user, ordered by name."""
        stmt = select(Tag).where(Tag.user_id == user_id).order_by(Tag.name)
        return list(self.db.scalars(stmt).all())

    def get_by_name(self, user_id: str, name: str) -> Tag | None:
        """Get tag by exact name."""
        results = self.list_by(user_id=user_id, name=name)
        return results[0] if results else None

    def usage_counts(self, user_id: str) -> dict[str, int]:
        """Assignment count per tag id (tags without assignments are included as 0)."""
        stmt = (
            select(Tag.id, func.count(TextTag.id))
            .outerjoin(TextTag, TextTag.tag_id == Tag.id)
            .where(Tag.user_id == user_id)
            .group_by(Tag.id)
        )
        return {tag_id: count for tag_id, count in self.db.execute(stmt).all()}
