"""
Validation stages for a single upload.

Each stage takes the current :class:`SessionState` and returns either an
updated state or a :class:`Rejection`. :func:`run_stages` stops at the first
rejection, so the first error always wins and no later stage runs. Stages
never touch the filesystem beyond reading the temporary upload.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Mapping, Sequence, Union

from upload_service.domain.models import (
    SERVER_SIDE_ERROR_CODES,
    UploadedFile,
    UploadErrorCode,
    UploadStatus,
    upload_error_message,
)
from upload_service.security.sniffing import expected_media_types, sniff_media_type

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1_048_576


@dataclass(frozen=True, slots=True)
class SessionState:
    """Everything known about an upload at a given point of the pipeline."""

    field_name: str
    upload_directory: str
    target_directory: Path
    upload: UploadedFile | None = None
    allowed_extensions: tuple[str, ...] = ()
    max_size_bytes: int | None = None
    extension: str | None = None
    media_type: str | None = None
    size_bytes: int | None = None
    stored_name: str | None = None
    target_file: Path | None = None
    relative_path: str | None = None

    @property
    def file(self) -> UploadedFile:
        if self.upload is None:
            raise ValueError("SessionState.upload must be set before this stage")
        return self.upload


@dataclass(frozen=True, slots=True)
class Rejection:
    """Terminal outcome of a stage that refused the upload."""

    code: str
    message: str
    status: UploadStatus = field(default=UploadStatus.REJECTED)


Stage = Callable[[SessionState], Union[SessionState, Rejection]]


def write_once(state: SessionState, **values: object) -> SessionState:
    for name in values:
        if getattr(state, name) is not None:
            raise ValueError(f"SessionState.{name} is already set")
    return replace(state, **values)


def require_upload(state: SessionState) -> SessionState | Rejection:
    if state.upload is None:
        return Rejection("missing_field", f"No file uploaded with field name: {state.field_name}")
    return state


def check_transport_error(state: SessionState) -> SessionState | Rejection:
    code = state.file.error_code
    if code == UploadErrorCode.OK:
        return state
    try:
        known = UploadErrorCode(code)
    except ValueError:
        return Rejection("upload_unknown", upload_error_message(code), UploadStatus.FAILED)
    status = UploadStatus.FAILED if known in SERVER_SIDE_ERROR_CODES else UploadStatus.REJECTED
    return Rejection(f"upload_{known.name.lower()}", upload_error_message(code), status)


def extract_extension(state: SessionState) -> SessionState:
    # text after the last dot of the base name, so ".htaccess" yields "htaccess"
    name = PurePosixPath(state.file.original_name.replace("\\", "/")).name
    _, dot, suffix = name.rpartition(".")
    return write_once(state, extension=suffix.lower() if dot else "")


def detect_media_type(state: SessionState) -> SessionState:
    return write_once(state, media_type=sniff_media_type(state.file.tmp_path))


def check_allowed_extension(state: SessionState) -> SessionState | Rejection:
    allowed = [ext.lower() for ext in state.allowed_extensions]
    if not allowed or state.extension in allowed:
        return state
    return Rejection(
        "invalid_extension",
        f"Invalid file type '{state.extension}'. Allowed types: {', '.join(allowed)}",
    )


def check_media_type_matches_extension(state: SessionState) -> SessionState | Rejection:
    expected = expected_media_types(state.extension or "")
    if expected is None or state.media_type in expected:
        return state
    return Rejection(
        "media_type_mismatch",
        "File content does not match extension. "
        f"Expected MIME: {' or '.join(expected)}, got: {state.media_type}",
    )


def check_size(state: SessionState) -> SessionState | Rejection:
    state = write_once(state, size_bytes=state.file.size)
    ceiling = state.max_size_bytes
    if ceiling is None or state.file.size <= ceiling:
        return state
    actual_mb = state.file.size / BYTES_PER_MB
    max_mb = ceiling / BYTES_PER_MB
    return Rejection(
        "file_too_large",
        f"File size ({actual_mb:.2f}MB) exceeds maximum allowed ({max_mb:.2f}MB)",
    )


VALIDATION_STAGES: tuple[Stage, ...] = (
    require_upload,
    check_transport_error,
    extract_extension,
    detect_media_type,
    check_allowed_extension,
    check_media_type_matches_extension,
    check_size,
)


def run_stages(
    state: SessionState, stages: Iterable[Stage] = VALIDATION_STAGES
) -> SessionState | Rejection:
    """Apply ``stages`` in order, stopping at the first rejection."""
    for stage in stages:
        outcome = stage(state)
        if isinstance(outcome, Rejection):
            logger.info(
                "Upload in field %r rejected at %s: %s",
                state.field_name,
                getattr(stage, "__name__", repr(stage)),
                outcome.message,
            )
            return outcome
        state = outcome
    return state


def initial_state(
    field_name: str,
    upload_directory: str,
    target_directory: Path,
    files: Mapping[str, UploadedFile],
    allowed_extensions: Sequence[str] = (),
    max_size_bytes: int | None = None,
) -> SessionState:
    return SessionState(
        field_name=field_name,
        upload_directory=upload_directory,
        target_directory=target_directory,
        upload=files.get(field_name),
        allowed_extensions=tuple(ext.lower() for ext in allowed_extensions),
        max_size_bytes=max_size_bytes,
    )
