"""Directory preparation, the final move and post-processing of stored uploads."""

from __future__ import annotations

import errno
import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Final

from PIL import Image, UnidentifiedImageError

from upload_service.domain.models import UploadResult, UploadStatus
from upload_service.security.paths import is_within
from upload_service.security.sniffing import IMAGE_EXTENSIONS
from upload_service.services.pipeline import SessionState

logger = logging.getLogger(__name__)

DIRECTORY_MODE: Final = 0o755
FILE_MODE: Final = 0o644
PUBLIC_PREFIX: Final = "public/"


class UploadSystemError(Exception):
    """Infrastructure failure that must surface as a server error, not a form error."""

    def __init__(self, code: str, message: str, status: int = 500):
        self.code = code
        self.message = message
        self.status = status
        super().__init__(message)


def prepare_directory(path: Path, display_path: str | None = None) -> Path:
    """
    Create ``path`` (and missing parents) with mode 0755 and check it is writable.

    Another request creating the same directory concurrently is not an error.
    """
    shown = display_path or str(path)
    missing = [p for p in reversed([path, *path.parents]) if not p.exists()]
    for directory in missing:
        try:
            directory.mkdir(mode=DIRECTORY_MODE)
        except FileExistsError:
            if not directory.is_dir():
                raise UploadSystemError(
                    "directory_create_failed", f"Failed to create upload directory: {shown}"
                ) from None
        except OSError as exc:
            logger.error("Cannot create %s: %s", directory, exc)
            raise UploadSystemError(
                "directory_create_failed", f"Failed to create upload directory: {shown}"
            ) from exc

    if not path.is_dir():
        raise UploadSystemError(
            "directory_create_failed", f"Failed to create upload directory: {shown}"
        )
    if not os.access(path, os.W_OK | os.X_OK):
        raise UploadSystemError(
            "directory_not_writable", f"Upload directory is not writable: {shown}"
        )
    return path


def is_upload_tmp_file(source: Path, tmp_root: Path) -> bool:
    """Only regular, non-symlinked files spooled into ``tmp_root`` may be moved."""
    try:
        info = source.lstat()
    except OSError:
        return False
    if stat.S_ISLNK(info.st_mode) or not stat.S_ISREG(info.st_mode):
        return False
    return is_within(source, tmp_root)


def move_upload(source: Path, target: Path, tmp_root: Path) -> bool:
    """
    Move a spooled upload into place.

    Returns False when ``source`` is not a genuine upload temp file or the move
    itself fails. Moves across filesystems copy into the target directory first
    so the final rename stays atomic.
    """
    if not is_upload_tmp_file(source, tmp_root):
        logger.warning("Refusing to move %s: not an upload temp file under %s", source, tmp_root)
        return False

    try:
        try:
            os.replace(source, target)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            _copy_then_replace(source, target)
        os.chmod(target, FILE_MODE)
    except OSError as exc:
        logger.error("Failed to move %s to %s: %s", source, target, exc)
        return False
    return True


def _copy_then_replace(source: Path, target: Path) -> None:
    fd, staging = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
    try:
        with os.fdopen(fd, "wb") as out, open(source, "rb") as src:
            shutil.copyfileobj(src, out)
            out.flush()
            os.fsync(out.fileno())
        os.replace(staging, target)
    except OSError:
        Path(staging).unlink(missing_ok=True)
        raise
    source.unlink(missing_ok=True)


def derive_public_url(upload_directory: str, relative_path: str, base_url: str) -> str:
    """Files stored under ``public/`` are reachable at ``base_url`` + the rest of the path."""
    if not upload_directory.startswith(PUBLIC_PREFIX):
        return ""
    return base_url + relative_path[len(PUBLIC_PREFIX):]


def probe_image_size(path: Path) -> tuple[int, int]:
    """Return pixel dimensions, or ``(0, 0)`` when the file cannot be read as an image."""
    try:
        with Image.open(path) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        logger.info("Could not read image dimensions of %s: %s", path, exc)
        return 0, 0
    return width, height


def commit(state: SessionState, base_url: str, tmp_root: Path) -> UploadResult:
    """Move an accepted upload to its content-addressed path and describe the result."""
    if state.target_file is None or state.relative_path is None or state.stored_name is None:
        raise ValueError("SessionState target paths must be set before commit")

    upload = state.file
    if not move_upload(Path(upload.tmp_path), state.target_file, tmp_root):
        return UploadResult.failed(
            "move_failed", f"Failed to move uploaded file to: {state.target_file}"
        )

    width = height = 0
    if state.extension in IMAGE_EXTENSIONS:
        width, height = probe_image_size(state.target_file)

    logger.info(
        "Stored %r as %s (%s bytes, %s)",
        upload.original_name,
        state.relative_path,
        state.size_bytes,
        state.media_type,
    )
    return UploadResult(
        status=UploadStatus.SUCCEEDED,
        success=True,
        original_file_name=upload.original_name,
        stored_file_name=state.stored_name,
        size_bytes=state.size_bytes or 0,
        extension=state.extension or "",
        mime_type=state.media_type or "",
        absolute_path=str(state.target_file),
        relative_path=state.relative_path,
        public_url=derive_public_url(state.upload_directory, state.relative_path, base_url),
        width=width,
        height=height,
    )
