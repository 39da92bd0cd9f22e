from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Upload service configuration loaded from ``UPLOAD_*`` environment variables.

    ``max_request_bytes`` bounds the whole multipart body. A request whose
    ``Content-Length`` is larger is refused before the form is parsed; a body
    sent without a length (chunked) is parsed first, with Starlette spooling
    file parts to disk, and each file part is then checked while it is copied
    into ``tmp_dir``. ``max_size_bytes`` is the per-upload ceiling the
    validation pipeline enforces on top of that.
    """

    model_config = SettingsConfigDict(env_prefix="UPLOAD_", env_file=".env", extra="ignore")

    log_level: str = "INFO"

    app_root: Path = Path("./var")
    upload_path: str = "public/uploads"
    tmp_dir: Path = Path("./var/tmp")
    base_url: str = "http://localhost:8000/"

    field_name: str = "file"
    allowed_extensions: list[str] = []
    max_size_bytes: int | None = None
    max_request_bytes: int = 20 * 1024 * 1024

    @field_validator("base_url")
    @classmethod
    def ensure_trailing_slash(cls, v: str) -> str:
        return v if v.endswith("/") else v + "/"

    @field_validator("allowed_extensions")
    @classmethod
    def lowercase_extensions(cls, v: list[str]) -> list[str]:
        return [ext.strip().lstrip(".").lower() for ext in v if ext.strip()]

    @field_validator("max_size_bytes")
    @classmethod
    def positive_ceiling(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("max_size_bytes must be a positive integer")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
