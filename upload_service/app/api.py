"""FastAPI application exposing the secure upload pipeline."""

import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from upload_service.adapters.request_files import collect_files, discard_spooled
from upload_service.config.settings import Settings, get_settings
from upload_service.domain.models import (
    UploadErrorCode,
    UploadResult,
    UploadStatus,
    upload_error_message,
)
from upload_service.security.problem_details import problem_response
from upload_service.services.storage import UploadSystemError
from upload_service.services.upload_service import UploadSession

# Configure logging
logging.basicConfig(level=get_settings().log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Secure Upload API",
    description="Content-addressed, validated single-file uploads",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:8080"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'self'",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

REJECTION_STATUS = {
    "missing_field": status.HTTP_400_BAD_REQUEST,
    "invalid_extension": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    "media_type_mismatch": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    "file_too_large": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "upload_ini_size": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "upload_form_size": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
}


def _ensure_correlation_id(request: Request) -> str:
    """Return existing correlation id or generate a new one."""
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = request.headers.get("X-Correlation-ID") or secrets.token_urlsafe(16)
        request.state.correlation_id = correlation_id
    return correlation_id


def _problem_response(
    request: Request,
    *,
    status_code: int,
    title: str,
    detail: str,
    code: str,
    headers: dict[str, str] | None = None,
    extras: dict[str, Any] | None = None,
):
    """Produce a RFC 7807 response with a stable correlation id."""
    return problem_response(
        status=status_code,
        title=title,
        detail=detail,
        code=code,
        headers=headers,
        extras=extras,
        correlation_id=_ensure_correlation_id(request),
        instance=str(request.url.path),
    )


@app.middleware("http")
async def correlation_middleware(request: Request, call_next):
    """Tag every request with a correlation id and add security headers."""
    correlation_id = _ensure_correlation_id(request)
    response = await call_next(request)
    response.headers.setdefault("X-Correlation-ID", correlation_id)
    for header, value in SECURITY_HEADERS.items():
        response.headers[header] = value
    return response


# Exception handlers
@app.exception_handler(UploadSystemError)
async def upload_system_error_handler(request: Request, exc: UploadSystemError):
    """Storage misconfiguration: alert operators, keep details out of the response."""
    logger.error(
        "Upload storage failure [%s] (correlation_id=%s): %s",
        exc.code,
        _ensure_correlation_id(request),
        exc.message,
    )
    return _problem_response(
        request,
        status_code=exc.status,
        title="Upload storage unavailable",
        detail="The upload could not be stored, please try again later",
        code="storage_unavailable",
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTPException exceptions."""
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    title = "HTTP error"
    code = "http_error"

    if exc.status_code == status.HTTP_404_NOT_FOUND:
        title = "Resource not found"
        code = "not_found"
    elif exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        title = "Method not allowed"
        code = "method_not_allowed"

    logger.warning("HTTPException (%s): %s", exc.status_code, detail)
    return _problem_response(
        request,
        status_code=exc.status_code,
        title=title,
        detail=detail,
        code=code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return _problem_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        title="Internal server error",
        detail="Internal server error",
        code="internal_error",
    )


def _declared_length(request: Request) -> int | None:
    try:
        return int(request.headers["content-length"])
    except (KeyError, ValueError):
        return None


@app.post(
    "/api/v1/uploads",
    response_model=UploadResult,
    status_code=status.HTTP_201_CREATED,
)
async def upload_file(
    request: Request,
    field: str | None = Query(None, min_length=1, max_length=100),
    directory: str | None = Query(None, max_length=255),
    settings: Settings = Depends(get_settings),
):
    """Validate a single multipart upload and store it under its content address."""
    declared = _declared_length(request)
    if declared is not None and declared > settings.max_request_bytes:
        logger.warning(
            "Upload request of %s bytes refused before parsing (limit %s)",
            declared,
            settings.max_request_bytes,
        )
        return _problem_response(
            request,
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            title="Invalid upload",
            detail=upload_error_message(UploadErrorCode.INI_SIZE),
            code="upload_ini_size",
            extras={"field": field or settings.field_name},
        )

    form = await request.form()
    files = await collect_files(form, Path(settings.tmp_dir), settings.max_request_bytes)
    session = UploadSession(files, settings).directory(directory)
    if field:
        session.field(field)

    try:
        result = await run_in_threadpool(session.commit)
    finally:
        discard_spooled(files)
        await form.close()

    if result.success:
        logger.info("Upload stored at %s", result.relative_path)
        return result

    if result.status is UploadStatus.FAILED:
        logger.error(
            "Upload failed [%s] (correlation_id=%s): %s",
            result.error_code,
            _ensure_correlation_id(request),
            result.error_message,
        )
        return _problem_response(
            request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            title="Upload failed",
            detail="The upload could not be stored, please try again later",
            code=result.error_code,
        )

    return _problem_response(
        request,
        status_code=REJECTION_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
        title="Invalid upload",
        detail=result.error_message,
        code=result.error_code,
        extras={"field": session.field_name},
    )


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
