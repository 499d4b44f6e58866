"""Text and assignment endpoints."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query, status

from living_tags.config import get_settings
from living_tags.core.dependencies import get_classifier, get_persistence
from living_tags.core.exceptions import AppError, EntityNotFound
from living_tags.schemas.tag import BatchResultResponse
from living_tags.schemas.text import (
    AssignmentResponse,
    AssignmentUpsert,
    DeleteAssignmentsResponse,
    TextCreate,
    TextResponse,
)
from living_tags.services.persistence import SqlPersistence
from living_tags.services.protocols import ClassifierProtocol
from living_tags.services.tagging.batch import BatchTagger
from living_tags.services.tagging.models import TextView
from living_tags.services.tagging.store import AssignmentStore, Collection

logger = logging.getLogger(__name__)

router = APIRouter()


async def _load_store(persistence: SqlPersistence) -> AssignmentStore:
    collection = Collection.build(
        await persistence.list_texts(),
        await persistence.list_tags(),
        await persistence.list_assignments(),
    )
    return AssignmentStore(persistence.user_id, collection)


async def _text_view(persistence: SqlPersistence, text_id: str) -> TextView:
    view = (await _load_store(persistence)).text(text_id)
    if view is None:
        raise EntityNotFound("Text not found", context={"id": text_id})
    return view


@router.get("/texts", response_model=list[TextResponse])
async def list_texts(
    search: str | None = Query(None, description="Tag-name terms, all must match"),
    persistence: SqlPersistence = Depends(get_persistence),
):
    """List texts newest first, optionally filtered by tag-name search."""
    store = await _load_store(persistence)
    view = store.open_view(search)
    try:
        return view.texts()
    finally:
        view.close()


@router.post("/texts", response_model=TextResponse, status_code=status.HTTP_201_CREATED)
async def create_text(
    text_data: TextCreate,
    persistence: SqlPersistence = Depends(get_persistence),
    classifier: ClassifierProtocol = Depends(get_classifier),
):
    """Add a text and, when enabled, tag it with the classifier.

    A classifier failure does not fail the request; the text is returned
    without AI tags.
    """
    text = await persistence.create_text(text_data.content, created_at=text_data.created_at)
    auto_tag = text_data.auto_tag
    if auto_tag is None:
        auto_tag = get_settings().auto_tag_on_create

    if auto_tag:
        glossary = await persistence.list_tags()
        if glossary:
            try:
                await BatchTagger(persistence, classifier).reclassify_text(text, glossary)
            except AppError as e:
                logger.warning("Auto-tagging failed for text %s: %s", text.id, e.detail)
    return await _text_view(persistence, text.id)


@router.delete("/texts/{text_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_text(text_id: str, persistence: SqlPersistence = Depends(get_persistence)):
    await persistence.delete_text(text_id)


@router.post("/texts/{text_id}/reclassify", response_model=TextResponse)
async def reclassify_text(
    text_id: str,
    persistence: SqlPersistence = Depends(get_persistence),
    classifier: ClassifierProtocol = Depends(get_classifier),
):
    """Replace the text's AI tags with fresh classifier output; manual tags stay."""
    text = await persistence.get_text(text_id)
    await BatchTagger(persistence, classifier).reclassify_text(text)
    return await _text_view(persistence, text_id)


@router.post("/texts/reclassify", response_model=BatchResultResponse)
async def reclassify_all(
    persistence: SqlPersistence = Depends(get_persistence),
    classifier: ClassifierProtocol = Depends(get_classifier),
):
    return await BatchTagger(persistence, classifier).reclassify_all()


@router.get("/assignments", response_model=list[AssignmentResponse])
async def list_assignments(
    text_id: str | None = Query(None),
    persistence: SqlPersistence = Depends(get_persistence),
):
    return await persistence.list_assignments(text_id)


@router.put("/texts/{text_id}/tags/{tag_id}", response_model=AssignmentResponse)
async def upsert_assignment(
    text_id: str,
    tag_id: str,
    assignment: AssignmentUpsert,
    persistence: SqlPersistence = Depends(get_persistence),
):
    """Assign a tag to a text. A manual write converts an existing AI assignment."""
    return await persistence.upsert_assignment(
        text_id, tag_id, assignment.confidence, assignment.source
    )


@router.delete("/texts/{text_id}/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
    text_id: str,
    tag_id: str,
    persistence: SqlPersistence = Depends(get_persistence),
):
    await persistence.delete_assignment(text_id, tag_id)


@router.delete("/texts/{text_id}/tags", response_model=DeleteAssignmentsResponse)
async def delete_assignments(
    text_id: str,
    source: Literal["ai", "manual"] = Query(...),
    persistence: SqlPersistence = Depends(get_persistence),
):
    """Delete every assignment of a text with the given source."""
    deleted = await persistence.delete_assignments_where(text_id, source)
    return DeleteAssignmentsResponse(deleted=deleted)
