"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from living_tags.config import get_settings
from living_tags.db.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


def _check_database(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        return False


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint."""
    database_ok = _check_database(db)
    return {
        "status": "healthy" if database_ok else "degraded",
        "version": settings.app_version,
        "database": "connected" if database_ok else "unavailable",
        "classifier": {
            "model": settings.classifier_model,
            "configured": bool(settings.classifier_api_key),
            "auto_tag_on_create": settings.auto_tag_on_create,
        },
        "export_format": settings.export_format,
    }


@router.get("/version")
async def version():
    """Get version info."""
    return {"name": settings.app_name, "version": settings.app_version}
