"""Generic base repository for SQLAlchemy models."""

from typing import Any, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Row access shared by the text, tag and assignment repositories.

    Repositories only stage changes on the session. SqlPersistence decides
    when to commit and turns missing rows into domain exceptions.
    """

    model: type[T]

    def __init__(self, db: Session) -> None:
        self.db = db

    def _filtered(self, stmt, filters: dict[str, Any]):
        for key, value in filters.items():
            stmt = stmt.where(getattr(self.model, key) == value)
        return stmt

    def get_with_filter(self, id_: Any, **filters: Any) -> T | None:
        """Get by primary key, constrained by filters such as ``user_id``."""
        stmt = select(self.model).where(self.model.id == id_)
        return self.db.scalar(self._filtered(stmt, filters))

    def list_by(self, **filters: Any) -> list[T]:
        return list(self.db.scalars(self._filtered(select(self.model), filters)).all())

    def count(self, **filters: Any) -> int:
        stmt = self._filtered(select(func.count()).select_from(self.model), filters)
        return self.db.scalar(stmt) or 0

    def add(self, obj: T) -> T:
        self.db.add(obj)
        return obj

    def delete(self, obj: T) -> None:
        self.db.delete(obj)

    def refresh(self, obj: T) -> T:
        self.db.refresh(obj)
        return obj

    def partial_update(self, obj: T, **fields: Any) -> T:
        """Set the given fields, leaving ``None`` values untouched."""
        for key, value in fields.items():
            if value is not None:
                setattr(obj, key, value)
        return obj
