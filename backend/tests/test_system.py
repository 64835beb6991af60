import re

import pytest
from fastapi.testclient import TestClient

from assessor.config import settings
from assessor.main import app
from assessor.version import APP_VERSION


def test_health_endpoint() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


def test_ready_endpoint_checks_db_and_storage() -> None:
    with TestClient(app) as client:
        response = client.get("/ready")
        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "ready"
        assert payload["checks"]["db"]["ok"] is True
        assert payload["checks"]["storage"] == {"ok": True, "backend": "local"}


def test_fastapi_uses_centralized_app_version() -> None:
    assert app.version == APP_VERSION
    with TestClient(app) as client:
        assert client.get("/").json()["version"] == APP_VERSION


def test_app_version_is_semver() -> None:
    assert re.fullmatch(r"\d+\.\d+\.\d+", APP_VERSION)


def test_ready_reports_unsupported_storage_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "storage_backend", "ftp")
    with TestClient(app) as client:
        response = client.get("/ready")
    assert response.status_code == 503
    assert response.json()["checks"]["storage"]["ok"] is False
