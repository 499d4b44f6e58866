"""Tag glossary endpoints."""

import logging

from fastapi import APIRouter, Depends, status

from living_tags.core.dependencies import get_classifier, get_persistence
from living_tags.schemas.tag import (
    BatchResultResponse,
    DefaultTagsResponse,
    TagCreate,
    TagResponse,
    TagUpdate,
    TagUsageCountsResponse,
    TagUsageResponse,
)
from living_tags.services.glossary import initialize_default_tags
from living_tags.services.persistence import SqlPersistence
from living_tags.services.protocols import ClassifierProtocol
from living_tags.services.tagging.batch import BatchTagger

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[TagResponse])
async def list_tags(persistence: SqlPersistence = Depends(get_persistence)):
    """List the glossary, ordered by name."""
    return await persistence.list_tags()


@router.post("", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(tag_data: TagCreate, persistence: SqlPersistence = Depends(get_persistence)):
    """Create a tag. A duplicate name is a 409."""
    tag = await persistence.create_tag(tag_data.name)
    logger.info("Created tag %s for user %s", tag.id, persistence.user_id)
    return tag


@router.get("/usage", response_model=TagUsageCountsResponse)
async def get_usage_counts(persistence: SqlPersistence = Depends(get_persistence)):
    """Assignment count per tag, zero included."""
    return TagUsageCountsResponse(counts=await persistence.count_assignments_by_tags())


@router.post("/defaults", response_model=DefaultTagsResponse)
async def seed_default_tags(persistence: SqlPersistence = Depends(get_persistence)):
    """Seed the default glossary if the user has no tags yet."""
    created = await initialize_default_tags(persistence)
    return DefaultTagsResponse(created=[TagResponse.model_validate(tag) for tag in created])


@router.get("/{tag_id}/usage", response_model=TagUsageResponse)
async def get_tag_usage(tag_id: str, persistence: SqlPersistence = Depends(get_persistence)):
    """Number of texts that would lose this tag on deletion."""
    count = await persistence.count_assignments_by_tag(tag_id)
    return TagUsageResponse(tag_id=tag_id, count=count)


@router.put("/{tag_id}", response_model=TagResponse)
async def rename_tag(
    tag_id: str,
    tag_data: TagUpdate,
    persistence: SqlPersistence = Depends(get_persistence),
):
    return await persistence.rename_tag(tag_id, tag_data.name)


@router.delete("/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tag(tag_id: str, persistence: SqlPersistence = Depends(get_persistence)):
    """Delete a tag and every assignment that references it."""
    await persistence.delete_tag(tag_id)
    logger.info("Deleted tag %s for user %s", tag_id, persistence.user_id)


@router.post("/{tag_id}/apply", response_model=BatchResultResponse)
async def apply_tag_to_texts(
    tag_id: str,
    persistence: SqlPersistence = Depends(get_persistence),
    classifier: ClassifierProtocol = Depends(get_classifier),
):
    """Offer a tag to every existing text through the classifier."""
    return await BatchTagger(persistence, classifier).apply_new_tag(tag_id)
