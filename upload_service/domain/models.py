"""
Domain models for the upload service.
"""

import enum
from dataclasses import dataclass
from typing import Dict

from pydantic import BaseModel, ConfigDict


class UploadErrorCode(enum.IntEnum):
    """Transport-level outcome reported by the request layer for one file."""

    OK = 0
    INI_SIZE = 1
    FORM_SIZE = 2
    PARTIAL = 3
    NO_FILE = 4
    NO_TMP_DIR = 6
    CANT_WRITE = 7
    EXTENSION = 8


UPLOAD_ERROR_MESSAGES: Dict[int, str] = {
    UploadErrorCode.INI_SIZE: "File exceeds the server's maximum upload size",
    UploadErrorCode.FORM_SIZE: "File exceeds the maximum size allowed by the form",
    UploadErrorCode.PARTIAL: "File was only partially uploaded",
    UploadErrorCode.NO_FILE: "No file was uploaded",
    UploadErrorCode.NO_TMP_DIR: "Missing temporary upload directory",
    UploadErrorCode.CANT_WRITE: "Failed to write file to disk",
    UploadErrorCode.EXTENSION: "A server extension stopped the file upload",
}

UNKNOWN_UPLOAD_ERROR = "Unknown upload error"

# Codes caused by the server rather than by the client's request.
SERVER_SIDE_ERROR_CODES = frozenset(
    {UploadErrorCode.NO_TMP_DIR, UploadErrorCode.CANT_WRITE, UploadErrorCode.EXTENSION}
)


def upload_error_message(code: int) -> str:
    """Map a transport error code to its human-readable message."""
    return UPLOAD_ERROR_MESSAGES.get(code, UNKNOWN_UPLOAD_ERROR)


@dataclass(frozen=True, slots=True)
class UploadedFile:
    """File descriptor handed over by the request layer for one form field."""

    original_name: str
    error_code: int
    tmp_path: str
    size: int


class UploadStatus(str, enum.Enum):
    """Terminal outcome of an upload session."""

    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    FAILED = "failed"


class UploadResult(BaseModel):
    """Outcome record returned once per upload session."""

    model_config = ConfigDict(frozen=True)

    status: UploadStatus
    success: bool = False
    error: bool = False
    error_code: str = ""
    error_message: str = ""
    original_file_name: str = ""
    stored_file_name: str = ""
    size_bytes: int = 0
    extension: str = ""
    mime_type: str = ""
    absolute_path: str = ""
    relative_path: str = ""
    public_url: str = ""
    width: int = 0
    height: int = 0

    @classmethod
    def rejected(cls, code: str, message: str) -> "UploadResult":
        return cls(status=UploadStatus.REJECTED, error=True, error_code=code, error_message=message)

    @classmethod
    def failed(cls, code: str, message: str) -> "UploadResult":
        return cls(status=UploadStatus.FAILED, error=True, error_code=code, error_message=message)
