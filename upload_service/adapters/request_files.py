"""
Adapter between Starlette multipart forms and the upload pipeline.

Each uploaded part is spooled into the upload temp directory and described
by an :class:`UploadedFile`, so the pipeline never reads request state
directly.
"""

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Dict, Mapping

from starlette.datastructures import FormData, UploadFile

from upload_service.domain.models import UploadedFile, UploadErrorCode

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
TMP_PREFIX = "upl_"


def client_file_name(raw: str | None) -> str:
    """Base name of the client-supplied file name, with any directory part dropped."""
    return PurePosixPath((raw or "").replace("\\", "/")).name


async def spool_upload(upload: UploadFile, tmp_dir: Path, max_bytes: int) -> UploadedFile:
    """Copy one uploaded part to a temp file and report how the transfer went."""
    original_name = client_file_name(upload.filename)
    if not original_name:
        return UploadedFile(original_name, UploadErrorCode.NO_FILE, "", 0)

    try:
        tmp_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=tmp_dir, prefix=TMP_PREFIX)
    except OSError as exc:
        logger.error("Upload temp directory %s unusable: %s", tmp_dir, exc)
        return UploadedFile(original_name, UploadErrorCode.NO_TMP_DIR, "", 0)

    size = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while chunk := await upload.read(CHUNK_SIZE):
                size += len(chunk)
                if size > max_bytes:
                    break
                out.write(chunk)
    except OSError as exc:
        logger.error("Failed to spool upload %r: %s", original_name, exc)
        Path(tmp_path).unlink(missing_ok=True)
        return UploadedFile(original_name, UploadErrorCode.CANT_WRITE, "", size)
    finally:
        await upload.close()

    if size > max_bytes:
        logger.warning("Upload %r exceeds request limit of %s bytes", original_name, max_bytes)
        Path(tmp_path).unlink(missing_ok=True)
        return UploadedFile(original_name, UploadErrorCode.INI_SIZE, "", size)

    return UploadedFile(original_name, UploadErrorCode.OK, tmp_path, size)


async def collect_files(form: FormData, tmp_dir: Path, max_bytes: int) -> Dict[str, UploadedFile]:
    """Build the file table of a request; only the first file of each field is kept."""
    files: Dict[str, UploadedFile] = {}
    for name, value in form.multi_items():
        if not isinstance(value, UploadFile):
            continue
        if name in files:
            await value.close()
            continue
        files[name] = await spool_upload(value, tmp_dir, max_bytes)
    return files


def discard_spooled(files: Mapping[str, UploadedFile]) -> None:
    """Remove temp files that were not moved into storage."""
    for uploaded in files.values():
        if uploaded.tmp_path:
            Path(uploaded.tmp_path).unlink(missing_ok=True)
