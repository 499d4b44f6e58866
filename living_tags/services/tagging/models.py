"""In-memory records for texts, tags and assignments.

Records are frozen so that snapshots taken by the mutation engine can share
them with live state without risk of aliasing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Source = Literal["ai", "manual"]

SOURCE_AI: Source = "ai"
SOURCE_MANUAL: Source = "manual"
MANUAL_CONFIDENCE = 1.0


@dataclass(frozen=True, slots=True)
class TagRecord:
    id: str
    name: str
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class TextRecord:
    id: str
    content: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class Assignment:
    """A (text, tag) relationship with confidence and provenance."""

    text_id: str
    tag_id: str
    confidence: float
    source: Source

    def __post_init__(self) -> None:
        if self.source not in (SOURCE_AI, SOURCE_MANUAL):
            raise ValueError(f"Unknown assignment source: {self.source!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence {self.confidence} outside [0, 1]")
        if self.source == SOURCE_MANUAL and self.confidence != MANUAL_CONFIDENCE:
            raise ValueError("Manual assignments must have confidence 1.0")

    @property
    def key(self) -> tuple[str, str]:
        return (self.text_id, self.tag_id)

    @property
    def is_manual(self) -> bool:
        return self.source == SOURCE_MANUAL

    @classmethod
    def manual(cls, text_id: str, tag_id: str) -> Assignment:
        return cls(text_id, tag_id, MANUAL_CONFIDENCE, SOURCE_MANUAL)


class TagCandidate(BaseModel):
    """One classifier suggestion, decoded at the service boundary."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str | None = None


@dataclass(frozen=True, slots=True)
class TaggedView:
    """A tag as shown on a text."""

    id: str
    name: str
    confidence: float
    source: Source


@dataclass(frozen=True, slots=True)
class TextView:
    """Read model for a text together with its tags."""

    id: str
    content: str
    created_at: datetime
    tags: tuple[TaggedView, ...] = field(default_factory=tuple)

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]
