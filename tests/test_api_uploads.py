import hashlib
import re
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from upload_service.app.api import app
from upload_service.config.settings import get_settings
from upload_service.services.upload_service import UploadSession


@pytest.fixture()
def client(settings):
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _tmp_files(settings):
    tmp_dir = Path(settings.tmp_dir)
    return list(tmp_dir.iterdir()) if tmp_dir.exists() else []


def test_upload_image_success(client, settings, jpeg_bytes):
    response = client.post(
        "/api/v1/uploads",
        files={"file": ("avatar.jpg", jpeg_bytes, "image/jpeg")},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "succeeded"
    assert re.fullmatch(r"[0-9a-f]{40}\.jpg", body["stored_file_name"])
    assert body["relative_path"].startswith("public/uploads/")
    assert body["public_url"] == f"{settings.base_url}uploads/{body['stored_file_name']}"
    assert body["width"] == 64
    assert body["height"] == 48
    assert Path(body["absolute_path"]).read_bytes() == jpeg_bytes
    assert "X-Correlation-ID" in response.headers
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert _tmp_files(settings) == []


def test_declared_content_type_is_not_trusted(client, settings):
    response = client.post(
        "/api/v1/uploads",
        files={"file": ("photo.jpg", b"definitely text", "image/jpeg")},
    )
    assert response.status_code == 415
    body = response.json()
    assert body["code"] == "media_type_mismatch"
    assert body["title"] == "Invalid upload"
    assert body["status"] == 415
    assert "got: text/plain" in body["detail"]
    assert response.headers["X-Correlation-ID"] == body["correlation_id"]
    assert _tmp_files(settings) == []


def test_custom_field_and_directory(client, png_bytes):
    response = client.post(
        "/api/v1/uploads",
        params={"field": "logo", "directory": "private/../logos"},
        files={"logo": ("logo.png", png_bytes, "image/png")},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["relative_path"].startswith("private/logos/")
    assert body["public_url"] == ""


def test_missing_field(client, png_bytes):
    response = client.post(
        "/api/v1/uploads",
        files={"attachment": ("logo.png", png_bytes, "image/png")},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "missing_field"
    assert body["detail"] == "No file uploaded with field name: file"
    assert body["field"] == "file"


def test_configured_size_ceiling(client, settings):
    settings.max_size_bytes = 10
    response = client.post(
        "/api/v1/uploads",
        files={"file": ("notes.txt", b"a" * 64, "text/plain")},
    )
    assert response.status_code == 413
    assert response.json()["code"] == "file_too_large"


def test_request_limit_is_enforced_before_parsing(client, settings):
    settings.max_request_bytes = 16
    response = client.post(
        "/api/v1/uploads",
        files={"file": ("notes.txt", b"a" * 64, "text/plain")},
    )
    assert response.status_code == 413
    body = response.json()
    assert body["code"] == "upload_ini_size"
    assert body["detail"] == "File exceeds the server's maximum upload size"
    assert body["field"] == "file"
    assert not Path(settings.tmp_dir).exists()


def test_storage_misconfiguration_is_a_server_error(client, settings, tmp_path, png_bytes):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    settings.app_root = blocker
    response = client.post(
        "/api/v1/uploads",
        files={"file": ("logo.png", png_bytes, "image/png")},
    )
    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "storage_unavailable"
    assert "public/uploads" not in body["detail"]
    assert _tmp_files(settings) == []


def test_move_failure_is_a_server_error(client, settings, png_bytes):
    stored_name = hashlib.sha1(png_bytes).hexdigest() + ".png"
    (Path(settings.app_root).resolve() / "public" / "uploads" / stored_name).mkdir(parents=True)
    response = client.post(
        "/api/v1/uploads",
        files={"file": ("logo.png", png_bytes, "image/png")},
    )
    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "move_failed"
    assert stored_name not in body["detail"]


def test_rejection_names_the_custom_field(client, png_bytes):
    response = client.post(
        "/api/v1/uploads",
        params={"field": "logo"},
        files={"file": ("logo.png", png_bytes, "image/png")},
    )
    assert response.status_code == 400
    assert response.json()["field"] == "logo"


def test_internal_value_error_is_a_server_error(settings, monkeypatch, png_bytes):
    def broken_commit(self):
        raise ValueError("upload state has no file")

    monkeypatch.setattr(UploadSession, "commit", broken_commit)
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            response = test_client.post(
                "/api/v1/uploads",
                files={"file": ("logo.png", png_bytes, "image/png")},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "internal_error"
    assert "upload state" not in body["detail"]
    assert _tmp_files(settings) == []


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
