"""Import result schema. The export document itself is served as rendered JSON."""

from pydantic import BaseModel


class ImportResultResponse(BaseModel):
    texts_imported: int
    tags_created: int
    ai_tags_assigned: int
    manual_tags_assigned: int
    errors: list[str]

    class Config:
        from_attributes = True
