"""Export and import of the user's collection."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import Response

from living_tags.core.dependencies import CurrentUser, get_current_user, get_persistence
from living_tags.schemas.portability import ImportResultResponse
from living_tags.services.persistence import SqlPersistence
from living_tags.services.portability import (
    coerce_import_payload,
    export_filename,
    export_from,
    import_document,
    render_export,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/export")
async def export_collection(
    current_user: CurrentUser = Depends(get_current_user),
    persistence: SqlPersistence = Depends(get_persistence),
):
    """Download every text, tag and assignment as a portable document."""
    document = await export_from(persistence, current_user.account)
    logger.info(
        "Exported %d texts and %d tags for user %s",
        len(document.texts),
        len(document.tag_glossary),
        current_user.id,
    )
    return Response(
        content=render_export(document),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.post("/import", response_model=ImportResultResponse)
async def import_collection(
    payload: Any = Body(...),
    persistence: SqlPersistence = Depends(get_persistence),
):
    """Import a portable document or a bare array of texts.

    An unsupported format is rejected before anything is written; per-entry
    failures are reported in ``errors``.
    """
    document = coerce_import_payload(payload)
    return await import_document(document, persistence)
