from contextlib import asynccontextmanager
import logging
from pathlib import Path
import re
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessor.api.routers.assessments import build_assessments_router
from assessor.api.routers.system import router as system_router
from assessor.api.services.sessions import SessionRegistry, http_error_for
from assessor.config import settings
from assessor.db import init_db
from assessor.errors import AssessmentError
from assessor.framework import FrameworkCatalog
from assessor.observability import configure_logging, log_context, normalize_request_id, sanitize_for_logging
from assessor.version import APP_VERSION

logger = logging.getLogger("assessor.api")

_ASSESSMENT_PATH = re.compile(r"^/assessments/([^/]+)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    logger.info("application_startup", extra={"event": "application_startup", "environment": settings.app_env})
    init_db()
    Path(settings.storage_root).mkdir(parents=True, exist_ok=True)
    catalog = FrameworkCatalog.from_directory(settings.frameworks_dir)
    app.state.registry = SessionRegistry(settings=settings, catalog=catalog)
    yield
    flushed = app.state.registry.shutdown()
    logger.info("application_shutdown", extra={"event": "application_shutdown", "flushed_sessions": flushed})


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", settings.request_id_header],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        match = _ASSESSMENT_PATH.match(request.url.path)
        started = time.perf_counter()

        with log_context(request_id=request_id, assessment_id=match.group(1) if match else None):
            logger.info(
                "request_started",
                extra={
                    "event": "request_started",
                    "method": request.method,
                    "path": request.url.path,
                    "query": sanitize_for_logging(dict(request.query_params)),
                    "client_ip": request.client.host if request.client else None,
                },
            )
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "request_failed",
                    extra={
                        "event": "request_failed",
                        "method": request.method,
                        "path": request.url.path,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    },
                )
                raise
            response.headers[settings.request_id_header] = request_id
            logger.info(
                "request_completed",
                extra={
                    "event": "request_completed",
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return response

    @app.exception_handler(AssessmentError)
    async def assessment_error_handler(_: Request, exc: AssessmentError) -> JSONResponse:
        error = http_error_for(exc)
        logger.warning(
            "assessment_request_rejected",
            extra={
                "event": "assessment_request_rejected",
                "error_type": type(exc).__name__,
                "status_code": error.status_code,
                "error": sanitize_for_logging(str(exc)),
            },
        )
        return JSONResponse(status_code=error.status_code, content={"detail": error.detail})

    app.include_router(system_router)
    app.include_router(build_assessments_router(get_registry=lambda: app.state.registry))
    return app


app = create_app()
