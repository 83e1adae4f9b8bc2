"""
FastAPI Application — Entry Point

Document intake / field-extraction API

Architecture:
  - Extraction, queue and metrics routers mounted under /api/v1/
  - One PipelineContext per process (queue, rate limiter, provider, DB engine)
    built in the lifespan and stored on app.state.context
  - Every 4xx/5xx body is an ErrorResponse envelope carrying the request id

Middleware stack (innermost → outermost):
  1. CORS: open in development, closed otherwise
  2. Request ID: reused from X-Request-ID or generated, then echoed back
  3. Gzip: large bulk/queue payloads compressed above 1 KB
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from docintake.api.v1.extract import router as extract_router
from docintake.api.v1.metrics import router as metrics_router
from docintake.api.v1.queue import router as queue_router
from docintake.core.config import settings
from docintake.core.context import PipelineContext, build_context
from docintake.db.session import check_db_health
from docintake.observability.tracing import TracingConfig
from docintake.schemas.extraction import ErrorDetail, ErrorResponse, ExtractionErrors

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(context: Optional[PipelineContext] = None) -> FastAPI:
    """
    Build the app. With `context` given (tests), the app uses it as-is and
    leaves its lifecycle to the caller; otherwise the lifespan builds one
    from settings and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        ctx = context or await build_context(settings)
        app.state.context = ctx

        logger.info(
            "Starting docintake | env=%s high=%s low=%s",
            settings.app_env, settings.high_tier_model, settings.low_tier_model,
        )
        db_health = await check_db_health(ctx.engine)
        if db_health["status"] != "ok":
            logger.critical("Database health check failed at startup: %s", db_health)
            raise RuntimeError(f"DB unavailable: {db_health}")
        if not settings.provider_api_key:
            logger.warning("PROVIDER_API_KEY is not set; extraction calls will fail")

        yield

        logger.info("Shutting down docintake")
        if owned:
            await ctx.aclose()

    app = FastAPI(
        title="docintake",
        description=(
            "Document field extraction API. Classifies scanned forms, routes them "
            "to a cost-appropriate model tier and stores normalized fields."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    if context is not None:
        app.state.context = context

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Location"],
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

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed extract/bulk bodies and bad query params become a 422 envelope."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request body or query parameters are invalid.",
            details=details,
            request_id=getattr(request.state, "request_id", None),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions; never exposes stack traces."""
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        body = ExtractionErrors.internal_error(request_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(extract_router, prefix="/api/v1")
    app.include_router(queue_router,   prefix="/api/v1")
    app.include_router(metrics_router, prefix="/api/v1")

    TracingConfig.init(settings)

    # ----------------------------------------------------------------
    # Health & readiness endpoints
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Process liveness only; touches neither the database nor the provider.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "docintake"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="200 with queue stats when the database answers, 503 otherwise.",
    )
    async def readiness(request: Request) -> JSONResponse:
        ctx: Optional[PipelineContext] = getattr(request.app.state, "context", None)
        if ctx is None:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": {"status": "error", "error": "not started"}},
            )
        db_status = await check_db_health(ctx.engine)
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "status":   "ready",
                "database": db_status,
                "queue":    ctx.queue.get_stats().as_dict(),
            },
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "docintake.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )
