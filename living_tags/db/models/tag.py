"""Tag glossary model."""

from sqlalchemy import Column, String, UniqueConstraint
from sqlalchemy.orm import relationship

from living_tags.db.database import Base
from living_tags.db.models.base import TimestampMixin, generate_uuid


class Tag(TimestampMixin, Base):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tags_user_name"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)  # Owner (external auth subject)
    name = Column(String(50), nullable=False, index=True)

    # Deleting a tag removes its assignments
    assignments = relationship(
        "TextTag",
        back_populates="tag",
        cascade="all, delete-orphan",
    )
