"""Content-addressed storage names: identical bytes always map to the same name."""

from __future__ import annotations

import hashlib
import os

from upload_service.services.pipeline import SessionState, write_once

CHUNK_SIZE = 65536


def content_digest(path: str | os.PathLike[str]) -> str:
    """Return the SHA-1 hex digest of the file at ``path``."""
    digest = hashlib.sha1()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_addressed_name(path: str | os.PathLike[str], extension: str) -> str:
    digest = content_digest(path)
    return f"{digest}.{extension}" if extension else digest


def assign_content_address(state: SessionState) -> SessionState:
    """Derive the stored name and the relative/absolute target paths."""
    stored_name = content_addressed_name(state.file.tmp_path, state.extension or "")
    return write_once(
        state,
        stored_name=stored_name,
        relative_path=state.upload_directory + stored_name,
        target_file=state.target_directory / stored_name,
    )
