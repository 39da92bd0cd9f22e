# tests/conftest.py
import io
import os
import struct
import sys
from pathlib import Path
from uuid import uuid4

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from upload_service.config.settings import Settings  # noqa: E402
from upload_service.domain.models import UploadedFile, UploadErrorCode  # noqa: E402

BASE_URL = "http://testserver/"

SECTOR = 512
ENDOFCHAIN = 0xFFFFFFFE
FREESECT = 0xFFFFFFFF
FATSECT = 0xFFFFFFFD
NOSTREAM = 0xFFFFFFFF
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (32, 16), noise: bool = False) -> bytes:
    """Render a small image in ``fmt`` and return the encoded bytes."""
    if noise:
        image = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
    else:
        image = Image.new("RGB", size, color=(200, 30, 30))
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture()
def settings(tmp_path):
    """Settings rooted in an isolated temp tree."""
    return Settings(
        app_root=tmp_path / "app",
        tmp_dir=tmp_path / "upload-tmp",
        upload_path="public/uploads",
        base_url=BASE_URL,
        allowed_extensions=[],
        max_size_bytes=None,
    )


@pytest.fixture()
def make_upload(settings):
    """Spool bytes into the upload temp dir, the way the request adapter does."""

    def _make(
        name: str,
        payload: bytes,
        error_code: int = UploadErrorCode.OK,
        size: int | None = None,
    ) -> UploadedFile:
        tmp_dir = Path(settings.tmp_dir)
        tmp_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = tmp_dir / f"upl_{uuid4().hex}"
        tmp_path.write_bytes(payload)
        return UploadedFile(
            original_name=name,
            error_code=error_code,
            tmp_path=str(tmp_path),
            size=len(payload) if size is None else size,
        )

    return _make


@pytest.fixture()
def png_bytes():
    return image_bytes("PNG", size=(32, 16))


@pytest.fixture()
def jpeg_bytes():
    return image_bytes("JPEG", size=(64, 48), noise=True)


@pytest.fixture()
def make_image():
    return image_bytes


def _dir_entry(name: str = "", kind: int = 0, child: int = NOSTREAM) -> bytes:
    encoded = (name + "\0").encode("utf-16-le") if name else b""
    return (
        encoded.ljust(64, b"\0")
        + struct.pack("<HBB", len(encoded), kind, 1)
        + struct.pack("<III", NOSTREAM, NOSTREAM, child)
        + b"\0" * 16
        + struct.pack("<I", 0)
        + b"\0" * 16
        + struct.pack("<IQ", ENDOFCHAIN, 0)
    )


def compound_document(stream_name: str, directory_sector: int = 1) -> bytes:
    """
    Minimal OLE2 (CFB v3) file holding one empty stream.

    The directory is placed at ``directory_sector``; everything between the FAT
    and the directory is free space, so a large sector number pushes the
    directory far into the file the way real Word documents often do.
    """
    fat_sectors = directory_sector // (SECTOR // 4) + 1
    if directory_sector < fat_sectors:
        raise ValueError("directory sector overlaps the FAT")

    fat = [FREESECT] * (fat_sectors * SECTOR // 4)
    for sector in range(fat_sectors):
        fat[sector] = FATSECT
    fat[directory_sector] = ENDOFCHAIN
    difat = list(range(fat_sectors)) + [FREESECT] * (109 - fat_sectors)

    header = (
        OLE2_MAGIC
        + b"\0" * 16
        + struct.pack("<HHHHH", 0x3E, 3, 0xFFFE, 9, 6)
        + b"\0" * 6
        + struct.pack("<8I", 0, fat_sectors, directory_sector, 0, 4096, ENDOFCHAIN, 0, ENDOFCHAIN)
        + struct.pack("<I", 0)
        + struct.pack("<109I", *difat)
    )
    directory = (
        _dir_entry("Root Entry", kind=5, child=1)
        + _dir_entry(stream_name, kind=2)
        + _dir_entry()
        + _dir_entry()
    )
    padding = b"\0" * ((directory_sector - fat_sectors) * SECTOR)
    return header + struct.pack(f"<{len(fat)}I", *fat) + padding + directory


@pytest.fixture()
def make_compound_document():
    return compound_document
