import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from greengarden.auth import AuthError
from greengarden.services.content_store import (
    ContentStoreError,
    ContentStoreFailure,
    ContentStoreNotFoundError,
    ContentStoreValidationError,
)

logger = logging.getLogger(__name__)


def error_body(kind: str, reason: str, field: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"kind": kind, "reason": reason}
    if field:
        body["field"] = field
    return body


def _status_for(exc: ContentStoreError) -> int:
    if isinstance(exc, ContentStoreNotFoundError):
        return 404
    if isinstance(exc, ContentStoreValidationError):
        return 400
    return 500


def register_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{kind, field?, reason}``."""

    @app.exception_handler(ContentStoreError)
    async def content_store_error_handler(request: Request, exc: ContentStoreError) -> JSONResponse:
        status_code = _status_for(exc)
        if isinstance(exc, ContentStoreFailure):
            return JSONResponse(status_code=500, content=error_body("StoreFailure", "The content store failed."))
        return JSONResponse(status_code=status_code, content=error_body(exc.error_kind, exc.reason, exc.field))

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content=error_body(exc.error_kind, exc.reason),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(part) for part in first.get("loc", ())]
        if len(loc) > 1 and loc[0] in {"body", "query", "path", "header", "cookie"}:
            loc = loc[1:]
        return JSONResponse(
            status_code=400,
            content=error_body("ValidationError", str(first.get("msg", "Invalid request")), ".".join(loc) or None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body("StoreFailure", "Unexpected server error."))
