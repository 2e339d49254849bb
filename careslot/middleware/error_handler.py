"""Global error handlers for the application."""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from careslot.schemas.common import ErrorResponse
from careslot.utils.errors import SchedulingError

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error="http_error", detail=exc.detail).model_dump(),
        headers=getattr(exc, "headers", None),
    )


async def scheduling_exception_handler(request: Request, exc: SchedulingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, detail=exc.detail).model_dump(),
    )
