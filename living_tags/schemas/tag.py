"""Tag glossary schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class TagCreate(BaseModel):
    name: str = Field(min_length=1)


class TagUpdate(BaseModel):
    name: str = Field(min_length=1)


class TagResponse(BaseModel):
    id: str
    name: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class TagUsageResponse(BaseModel):
    """Number of assignments that reference one tag."""

    tag_id: str
    count: int


class TagUsageCountsResponse(BaseModel):
    counts: dict[str, int]


class DefaultTagsResponse(BaseModel):
    """Tags seeded into an empty glossary."""

    created: list[TagResponse]


class BatchErrorResponse(BaseModel):
    text_id: str
    error: str

    class Config:
        from_attributes = True


class BatchResultResponse(BaseModel):
    """Outcome of applying the classifier across every text."""

    total_processed: int
    success_count: int
    error_count: int
    skipped_count: int
    errors: list[BatchErrorResponse]

    class Config:
        from_attributes = True
