import pytest
from fastapi.testclient import TestClient

from photo_api.config import Settings
from photo_api.main import create_app
from photo_api.services.blob_store import MemoryBlobStore, create_blob_store


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"


def test_openapi_json(client):
    resp = client.get("/openapi.json")
    assert resp.status_code == 200
    data = resp.json()
    assert "/api/upload" in data["paths"]
    assert "/api/update/{collection}/{album}/{id}" in data["paths"]


def test_metrics_endpoint(client):
    client.get("/api")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "text" in resp.headers.get("content-type", "").lower()
    assert "photoapi_http_requests_total" in resp.text


def test_unhandled_errors_become_500(settings, store, verifier):
    class BrokenStore(MemoryBlobStore):
        async def find_by_tags(self, expression):
            raise RuntimeError("boom")

    app = create_app(settings, store=BrokenStore(settings.storage_url), verifier=verifier)
    with TestClient(app) as c:
        resp = c.get("/api")
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Internal server error"


def test_store_driver_selection():
    memory = create_blob_store(Settings(_env_file=None, STORAGE_DRIVER="memory"))
    assert isinstance(memory, MemoryBlobStore)
    with pytest.raises(RuntimeError):
        create_blob_store(Settings(_env_file=None, STORAGE_DRIVER="ftp"))


def test_production_requires_client_id():
    settings = Settings(_env_file=None, STORAGE_DRIVER="azure", CONTAINER_APP_NAME="photo-api")
    assert settings.is_production
    with pytest.raises(RuntimeError):
        create_blob_store(settings)


def test_settings_parse_comma_lists():
    settings = Settings(_env_file=None, CORS_ORIGINS="https://a.test, https://b.test", JWT_ALGORITHMS="RS256,ES256")
    assert settings.CORS_ORIGINS == ["https://a.test", "https://b.test"]
    assert settings.JWT_ALGORITHMS == ["RS256", "ES256"]
    assert settings.storage_url == "https://devstoreaccount1.blob.core.windows.net"
