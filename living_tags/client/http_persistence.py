"""Persistence collaborator backed by the Living Tags REST API.

Lets the optimistic mutation engine run in a process that has no database
of its own. Responses are decoded with pydantic at the boundary and HTTP
errors are mapped back onto the application's exception types.
"""

import logging
from datetime import datetime
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from living_tags.config import Settings, get_settings
from living_tags.core.exceptions import (
    AppError,
    DuplicateTagNameError,
    EntityNotFound,
    ImportFormatError,
    ManualAssignmentConflict,
    PersistenceError,
    ValidationError,
)
from living_tags.services.tagging.models import Assignment, Source, TagRecord, TextRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _TagPayload(BaseModel):
    id: str
    name: str
    created_at: datetime | None = None


class _TextPayload(BaseModel):
    id: str
    content: str
    created_at: datetime


class _AssignmentPayload(BaseModel):
    text_id: str
    tag_id: str
    confidence: float
    source: Source


_TAG = TypeAdapter(_TagPayload)
_TAGS = TypeAdapter(list[_TagPayload])
_TEXT = TypeAdapter(_TextPayload)
_TEXTS = TypeAdapter(list[_TextPayload])
_ASSIGNMENT = TypeAdapter(_AssignmentPayload)
_ASSIGNMENTS = TypeAdapter(list[_AssignmentPayload])

# error_code in the response body wins over the bare status
ERROR_CODES: dict[str, type[AppError]] = {
    "DUPLICATE_TAG_NAME": DuplicateTagNameError,
    "MANUAL_ASSIGNMENT_CONFLICT": ManualAssignmentConflict,
    "IMPORT_FORMAT_ERROR": ImportFormatError,
    "VALIDATION_ERROR": ValidationError,
    "NOT_FOUND": EntityNotFound,
}

ERROR_STATUSES: dict[int, type[AppError]] = {
    400: ValidationError,
    404: EntityNotFound,
    409: DuplicateTagNameError,
    422: ValidationError,
}


def map_http_error(response: httpx.Response) -> AppError:
    """Convert an error response into the matching AppError."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    detail = body.get("detail")
    if not isinstance(detail, str):
        detail = f"API request failed ({response.status_code})"
    error_class = ERROR_CODES.get(body.get("error_code", ""))
    if error_class is None:
        error_class = ERROR_STATUSES.get(response.status_code, PersistenceError)
    context = {k: v for k, v in body.items() if k not in ("detail", "error_code")}
    return error_class(detail, context=context or None)


class HttpPersistence:
    """PersistenceProtocol implementation over the REST API."""

    def __init__(
        self,
        token: str,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = settings.api_base_url.rstrip("/")
        self.timeout = settings.api_timeout_seconds
        self.token = token
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(
                    method, path, json=json, params=params, headers=self._headers()
                )
        except httpx.HTTPError as e:
            logger.error("API %s %s failed: %s", method, path, e)
            raise PersistenceError(f"API unreachable: {e}") from e

        if response.is_error:
            error = map_http_error(response)
            logger.warning(
                "API %s %s returned %d: %s", method, path, response.status_code, error.detail
            )
            raise error
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _decode(self, adapter: TypeAdapter[T], data: Any) -> T:
        try:
            return adapter.validate_python(data)
        except PydanticValidationError as e:
            raise PersistenceError(
                f"Unexpected API response: {e.error_count()} validation errors"
            ) from e

    # --- Texts ---

    async def create_text(self, content: str, created_at: datetime | None = None) -> TextRecord:
        body: dict[str, Any] = {"content": content, "auto_tag": False}
        if created_at is not None:
            body["created_at"] = created_at.isoformat()
        data = self._decode(_TEXT, await self._request("POST", "/api/texts", body))
        return TextRecord(data.id, data.content, data.created_at)

    async def delete_text(self, text_id: str) -> None:
        await self._request("DELETE", f"/api/texts/{text_id}")

    async def list_texts(self) -> list[TextRecord]:
        data = self._decode(_TEXTS, await self._request("GET", "/api/texts"))
        return [TextRecord(t.id, t.content, t.created_at) for t in data]

    # --- Tags ---

    async def create_tag(self, name: str) -> TagRecord:
        data = await self._request("POST", "/api/tags", {"name": name})
        tag = self._decode(_TAG, data)
        return TagRecord(tag.id, tag.name, tag.created_at)

    async def rename_tag(self, tag_id: str, name: str) -> TagRecord:
        data = await self._request("PUT", f"/api/tags/{tag_id}", {"name": name})
        tag = self._decode(_TAG, data)
        return TagRecord(tag.id, tag.name, tag.created_at)

    async def delete_tag(self, tag_id: str) -> None:
        await self._request("DELETE", f"/api/tags/{tag_id}")

    async def list_tags(self) -> list[TagRecord]:
        data = self._decode(_TAGS, await self._request("GET", "/api/tags"))
        return [TagRecord(t.id, t.name, t.created_at) for t in data]

    # --- Assignments ---

    async def list_assignments(self, text_id: str | None = None) -> list[Assignment]:
        params = {"text_id": text_id} if text_id else None
        data = self._decode(
            _ASSIGNMENTS, await self._request("GET", "/api/assignments", params=params)
        )
        return [Assignment(a.text_id, a.tag_id, a.confidence, a.source) for a in data]

    async def upsert_assignment(
        self, text_id: str, tag_id: str, confidence: float, source: Source
    ) -> Assignment:
        data = await self._request(
            "PUT",
            f"/api/texts/{text_id}/tags/{tag_id}",
            {"confidence": confidence, "source": source},
        )
        a = self._decode(_ASSIGNMENT, data)
        return Assignment(a.text_id, a.tag_id, a.confidence, a.source)

    async def delete_assignment(self, text_id: str, tag_id: str) -> None:
        await self._request("DELETE", f"/api/texts/{text_id}/tags/{tag_id}")

    async def delete_assignments_where(self, text_id: str, source: Source) -> int:
        data = await self._request(
            "DELETE", f"/api/texts/{text_id}/tags", params={"source": source}
        )
        return int(data["deleted"])

    async def count_assignments_by_tag(self, tag_id: str) -> int:
        data = await self._request("GET", f"/api/tags/{tag_id}/usage")
        return int(data["count"])

    async def count_assignments_by_tags(self) -> dict[str, int]:
        data = await self._request("GET", "/api/tags/usage")
        return {k: int(v) for k, v in data["counts"].items()}
