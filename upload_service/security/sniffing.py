"""Content-based media type detection and the extension/MIME policy table."""

from __future__ import annotations

import logging
import os
from typing import Final

import magic

logger = logging.getLogger(__name__)

FALLBACK_MEDIA_TYPE: Final = "application/octet-stream"

DOCX_MEDIA_TYPE: Final = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MEDIA_TYPE: Final = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

MIME_EXTENSION_MAP: Final[dict[str, tuple[str, ...]]] = {
    "jpg": ("image/jpeg", "image/pjpeg"),
    "jpeg": ("image/jpeg", "image/pjpeg"),
    "png": ("image/png",),
    "gif": ("image/gif",),
    "pdf": ("application/pdf",),
    "doc": ("application/msword",),
    "docx": (DOCX_MEDIA_TYPE,),
    "xls": ("application/vnd.ms-excel",),
    "xlsx": (XLSX_MEDIA_TYPE,),
    "txt": ("text/plain",),
    "csv": ("text/csv", "text/plain"),
    "zip": ("application/zip", "application/x-zip-compressed"),
}

IMAGE_EXTENSIONS: Final = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp"})


def expected_media_types(extension: str) -> tuple[str, ...] | None:
    """Return the media types accepted for ``extension`` or None if unlisted."""
    return MIME_EXTENSION_MAP.get(extension.lower())


def sniff_media_type(path: str | os.PathLike[str]) -> str:
    """
    Detect the media type of a file on disk with libmagic.

    The client-declared Content-Type is never consulted. libmagic reads from
    the file itself, so containers such as OLE2 documents are inspected past
    the first buffer.
    """
    try:
        detected = magic.from_file(os.fspath(path), mime=True)
    except magic.MagicException as exc:
        logger.warning("libmagic could not inspect %s: %s", path, exc)
        return FALLBACK_MEDIA_TYPE
    return (detected or FALLBACK_MEDIA_TYPE).lower().strip()
