"""Shared model utilities and mixins."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class TimestampMixin:
    """Provides standard ``created_at`` / ``updated_at`` columns.

    Models that need ``index=True`` on ``created_at`` should override the column.
    """

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
