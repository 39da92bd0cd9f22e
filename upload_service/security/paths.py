"""Path helpers that keep caller-supplied directories inside the storage root."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Final

TRAVERSAL_TOKEN: Final = ".."
_SLASH_RUN: Final = re.compile(r"/+")


def sanitize_path(path: str) -> str:
    """
    Normalize a relative directory into a traversal-free form.

    Every ``..`` is removed, back-slashes become forward slashes, slash runs
    collapse, and the result is trimmed and terminated by exactly one ``/``.
    An empty input yields ``/``.
    """
    cleaned = path.replace(TRAVERSAL_TOKEN, "").replace("\\", "/")
    cleaned = _SLASH_RUN.sub("/", cleaned)
    return cleaned.strip("/") + "/"


def is_within(path: str | os.PathLike[str], root: str | os.PathLike[str]) -> bool:
    """Return True when ``path`` resolves to a location under ``root``."""
    resolved = Path(path).resolve()
    root_path = Path(root).resolve()
    return resolved == root_path or root_path in resolved.parents
