"""Text and assignment schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class TextCreate(BaseModel):
    content: str = Field(min_length=1)
    created_at: datetime | None = None
    auto_tag: bool | None = None  # None follows the server setting


class TaggedResponse(BaseModel):
    id: str
    name: str
    confidence: float
    source: Literal["ai", "manual"]

    class Config:
        from_attributes = True


class TextResponse(BaseModel):
    id: str
    content: str
    created_at: datetime
    tags: list[TaggedResponse] = []

    class Config:
        from_attributes = True


class AssignmentUpsert(BaseModel):
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    source: Literal["ai", "manual"] = "manual"


class AssignmentResponse(BaseModel):
    text_id: str
    tag_id: str
    confidence: float
    source: Literal["ai", "manual"]

    class Config:
        from_attributes = True


class DeleteAssignmentsResponse(BaseModel):
    deleted: int
