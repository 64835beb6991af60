from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from assessor.config import settings
from assessor.db import get_conn
from assessor.storage import backend_for
from assessor.version import APP_VERSION


router = APIRouter()


@router.get("/")
def root() -> dict[str, str]:
    return {"service": "assessor-backend", "status": "running", "version": APP_VERSION}


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "environment": settings.app_env}


@router.get("/ready", response_model=None)
def ready() -> JSONResponse:
    payload: dict[str, object] = {
        "status": "ready",
        "environment": settings.app_env,
        "checks": {},
    }

    try:
        with get_conn() as conn:
            conn.execute("SELECT 1").fetchone()
        payload["checks"]["db"] = {"ok": True, "backend": "sqlite"}
    except Exception as exc:
        payload["status"] = "not_ready"
        payload["checks"]["db"] = {"ok": False, "backend": "sqlite", "error": str(exc)}
        return JSONResponse(status_code=503, content=payload)

    try:
        payload["checks"]["storage"] = backend_for(settings).probe()
    except Exception as exc:  # pragma: no cover - s3 branch depends on AWS runtime integration
        payload["status"] = "not_ready"
        payload["checks"]["storage"] = {"ok": False, "backend": settings.storage_backend, "error": str(exc)}
        return JSONResponse(status_code=503, content=payload)

    return JSONResponse(status_code=200, content=payload)
