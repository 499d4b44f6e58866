"""Text and text-tag assignment models."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    String,
    Text as TextColumn,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from living_tags.db.database import Base
from living_tags.db.models.base import TimestampMixin, generate_uuid, utcnow


class Text(TimestampMixin, Base):
    __tablename__ = "texts"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    content = Column(TextColumn, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    assignments = relationship(
        "TextTag",
        back_populates="text",
        cascade="all, delete-orphan",
    )


class TextTag(TimestampMixin, Base):
    """One (text, tag) assignment with confidence and provenance."""

    __tablename__ = "text_tags"
    __table_args__ = (
        UniqueConstraint("text_id", "tag_id", name="uq_text_tags_text_tag"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_text_tags_confidence"),
        CheckConstraint("source IN ('ai', 'manual')", name="ck_text_tags_source"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    text_id = Column(
        String, ForeignKey("texts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_id = Column(String, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True)
    confidence = Column(Float, nullable=False)  # Always 1.0 for manual
    source = Column(String(10), nullable=False, index=True)  # ai | manual

    text = relationship("Text", back_populates="assignments")
    tag = relationship("Tag", back_populates="assignments")
