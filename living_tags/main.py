"""FastAPI application entry point."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from living_tags.api import health, portability, tags, texts
from living_tags.config import get_settings
from living_tags.core.error_handlers import register_error_handlers
from living_tags.core.logging import configure_logging
from living_tags.db.database import init_db
from living_tags.middleware.request_logging import RequestLoggingMiddleware

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize storage."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Classifier model: {settings.classifier_model}")

    app.state.start_time = time.time()
    app.state.settings = settings

    init_db()

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Personal text collection with AI and manual tags",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Register global error handlers (AppError → JSON responses)
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging middleware (adds X-Request-ID, logs method/path/latency)
app.add_middleware(RequestLoggingMiddleware)

# API Routes
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(tags.router, prefix="/api/tags", tags=["Tags"])
app.include_router(texts.router, prefix="/api", tags=["Texts"])
app.include_router(portability.router, prefix="/api", tags=["Import/Export"])


def run() -> None:
    import uvicorn

    uvicorn.run("living_tags.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
