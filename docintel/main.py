"""
FastAPI Application — Entry Point

Document Intelligence API

Architecture:
  - All routes live under API_PREFIX (default /api)
  - Submissions return 202 and hand work to the job queue (Celery, or the
    in-process fallback); extraction never runs inside a request
  - Retrieval is gated by document-scoped API keys (x-api-key)
  - Projects are gated by the configured identity provider
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS — restrict to configured origins
  2. Request ID + access logging — X-Request-ID on every response
  3. Trusted host — reject unexpected Host headers in production
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from docintel.api.dependencies import get_usage_recorder
from docintel.api.v1.admin import router as admin_router
from docintel.api.v1.data import router as data_router
from docintel.api.v1.documents import router as documents_router
from docintel.api.v1.projects import router as projects_router
from docintel.core.config import settings
from docintel.core.errors import DocIntelError
from docintel.db.session import check_db_health, engine, init_models
from docintel.schemas.documents import ErrorResponse

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Application lifespan — startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: validate DB connectivity, log config summary.
    Run on shutdown: flush pending usage records, clean up connection pools.
    """
    logger.info(
        "Starting Document Intelligence API | env=%s storage=%s queue=%s",
        settings.app_env, settings.storage_backend, settings.queue_backend,
    )

    if settings.is_sqlite:
        # Local development database; production schemas are migrated separately
        await init_models()

    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.critical("Database health check failed at startup: %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")
    logger.info("Database: connected")

    yield

    logger.info("Shutting down Document Intelligence API")
    await get_usage_recorder().flush()
    await engine.dispose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title="Document Intelligence API",
        description=(
            "Upload or register documents, extract structured data with an AI model "
            "asynchronously, and serve the result behind document-scoped API keys."
        ),
        version="1.0.0",
        docs_url=f"{settings.api_prefix}/docs" if not settings.is_production else None,
        redoc_url=f"{settings.api_prefix}/redoc" if not settings.is_production else None,
        openapi_url=f"{settings.api_prefix}/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else settings.cors_allow_origins,
        allow_credentials=settings.app_env != "development",
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-User-ID", "x-api-key"],
        expose_headers=["X-Request-ID", "X-Document-ID", "Location"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response

    if settings.is_production:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(DocIntelError)
    async def docintel_exception_handler(request: Request, exc: DocIntelError):
        request_id = _request_id(request)
        if exc.status_code >= 500:
            logger.error(
                "Request failed | path=%s code=%s error=%s request_id=%s",
                request.url.path, exc.error_code, exc.message, request_id,
            )
        else:
            logger.info(
                "Request rejected | path=%s status=%d code=%s",
                request.url.path, exc.status_code, exc.error_code,
            )
        body = ErrorResponse(error=exc.message, error_code=exc.error_code, request_id=request_id)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies and parameters are a 400, not FastAPI's default 422."""
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        body = ErrorResponse(
            error=f"Request validation failed: {problems}",
            error_code="VALIDATION_ERROR",
            request_id=_request_id(request),
        )
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = _request_id(request)
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        body = ErrorResponse(
            error="An unexpected error occurred.",
            error_code="INTERNAL_ERROR",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix=settings.api_prefix)
    app.include_router(data_router,      prefix=settings.api_prefix)
    app.include_router(projects_router,  prefix=settings.api_prefix)
    app.include_router(admin_router,     prefix=settings.api_prefix)

    # ----------------------------------------------------------------
    # Health & readiness endpoints (no auth — used by load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "docintel-api"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the database is reachable.",
    )
    async def readiness() -> JSONResponse:
        db_status = await check_db_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()
