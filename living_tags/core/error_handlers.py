"""Global error handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from living_tags.core.exceptions import AppError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app.

    Catches all AppError subclasses and returns a consistent JSON response
    with `detail`, `error_code`, and any extra context fields.
    """

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning(
                "app_error",
                extra={"error_code": exc.error_code, "path": request.url.path},
            )
        content: dict = {
            "detail": exc.detail,
            "error_code": exc.error_code,
        }
        if exc.context:
            content.update(exc.context)
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
        )
