"""
Upload session: configure one upload, then commit it exactly once.
"""

import logging
from pathlib import Path
from typing import Iterable, Mapping, Optional

from upload_service.config.settings import Settings
from upload_service.domain.models import UploadedFile, UploadResult, UploadStatus
from upload_service.security.paths import sanitize_path
from upload_service.services import storage
from upload_service.services.content_address import assign_content_address
from upload_service.services.pipeline import Rejection, initial_state, run_stages

logger = logging.getLogger(__name__)


class UploadSession:
    """
    Builder for a single upload.

    Setters return the session so calls can be chained::

        result = (
            UploadSession(files, settings)
            .field("avatar")
            .directory("public/avatars")
            .allowed_types(["jpg", "png"])
            .max_size(2 * 1024 * 1024)
            .commit()
        )

    Directory preparation failures raise :class:`storage.UploadSystemError`;
    every other outcome is reported through the returned :class:`UploadResult`.
    """

    def __init__(self, files: Mapping[str, UploadedFile], settings: Settings):
        self._files = files
        self._settings = settings
        self._field_name = settings.field_name
        self._upload_directory = sanitize_path(settings.upload_path)
        self._allowed_extensions: list[str] = list(settings.allowed_extensions)
        self._max_size: Optional[int] = settings.max_size_bytes
        self._committed = False

    @property
    def field_name(self) -> str:
        return self._field_name

    @property
    def upload_directory(self) -> str:
        return self._upload_directory

    def field(self, name: str) -> "UploadSession":
        self._field_name = name
        return self

    def directory(self, path: Optional[str]) -> "UploadSession":
        """Set the relative target directory; None restores the configured default."""
        self._upload_directory = sanitize_path(
            self._settings.upload_path if path is None else path
        )
        return self

    def allowed_types(self, extensions: Optional[Iterable[str]]) -> "UploadSession":
        self._allowed_extensions = [ext.lower() for ext in extensions or ()]
        return self

    def max_size(self, size_bytes: Optional[int]) -> "UploadSession":
        if size_bytes is not None and size_bytes <= 0:
            raise ValueError("max_size must be a positive number of bytes")
        self._max_size = size_bytes
        return self

    def target_directory(self) -> Path:
        root = Path(self._settings.app_root).resolve()
        return root / self._upload_directory.strip("/")

    def commit(self) -> UploadResult:
        if self._committed:
            raise RuntimeError("UploadSession.commit() may only be called once")
        self._committed = True
        logger.debug("Committing upload field %r into %s", self._field_name, self._upload_directory)

        target_directory = storage.prepare_directory(
            self.target_directory(), display_path=self._upload_directory
        )

        state = initial_state(
            field_name=self._field_name,
            upload_directory=self._upload_directory,
            target_directory=target_directory,
            files=self._files,
            allowed_extensions=self._allowed_extensions,
            max_size_bytes=self._max_size,
        )
        outcome = run_stages(state)
        if isinstance(outcome, Rejection):
            return _result_from_rejection(outcome)

        outcome = assign_content_address(outcome)
        return storage.commit(
            outcome,
            base_url=self._settings.base_url,
            tmp_root=Path(self._settings.tmp_dir),
        )


def _result_from_rejection(rejection: Rejection) -> UploadResult:
    if rejection.status is UploadStatus.FAILED:
        return UploadResult.failed(rejection.code, rejection.message)
    return UploadResult.rejected(rejection.code, rejection.message)
