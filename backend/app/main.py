"""FastAPI application."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.exceptions import UpstreamServiceError
from app.logging_config import setup_logging
from app.middleware import ApiPrefixMiddleware, RateLimitMiddleware, SecurityHeadersMiddleware
from app.routes import auth as auth_module
from app.routes import credits as credits_module
from app.routes import integrations as integrations_module
from app.routes import transcriptions as transcriptions_module
from app.routes import webhook as webhook_module
from app.services.assemblyai import AssemblyAIClient
from app.services.google_drive import GoogleDriveClient
from app.services.reconciler import ReconciliationPoller

# Initialize logging
setup_logging()
logger = logging.getLogger("app.main")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown."""
    logger.info("Starting Yolo Transcript backend")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS origins: {settings.cors_origins_list}")

    from app.startup_checks import run_startup_checks

    await run_startup_checks()

    from app.database import engine, AsyncSessionLocal
    from app.migrations_utils import check_migration_status

    current_rev, head_rev = await check_migration_status(engine)
    logger.info(f"Database migration status: {current_rev} (head: {head_rev})")
    if current_rev != head_rev and settings.is_production:
        logger.warning(
            "Database migrations are not up to date. "
            "Run 'alembic upgrade head' before starting in production."
        )

    app.state.assemblyai = AssemblyAIClient.from_settings()
    app.state.google_drive = GoogleDriveClient.from_settings()

    # Tests drive reconciliation directly unless they ask for the poller.
    poller = ReconciliationPoller(AsyncSessionLocal, app.state.assemblyai)
    app.state.poller = poller
    if settings.is_testing and os.getenv("FORCE_POLLER_START") != "1":
        logger.info("Testing mode detected; reconciliation poller not started")
    else:
        await poller.start()
        logger.info("Reconciliation poller started")

    yield

    logger.info("Shutting down Yolo Transcript backend")
    await poller.stop()
    await app.state.assemblyai.aclose()
    await app.state.google_drive.aclose()


app = FastAPI(
    title="Yolo Transcript",
    description="Credit-metered transcription backend",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(UpstreamServiceError)
async def upstream_exception_handler(request: Request, exc: UpstreamServiceError):
    logger.error("%s call failed on %s %s: %s", exc.service, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


# Reflect Origin (when present) so browsers get CORS headers even on errors.
@app.middleware("http")
async def ensure_cors_headers(request, call_next):
    origin = request.headers.get("origin")
    method = request.method.upper()
    if method == "OPTIONS":
        from fastapi.responses import Response

        resp = Response(status_code=200)
    else:
        try:
            resp = await call_next(request)
        except HTTPException:
            raise
        except Exception:  # noqa: B902
            from fastapi.responses import PlainTextResponse

            logger.exception("Request failed: %s %s", request.method, request.url)
            resp = PlainTextResponse("Internal Server Error", status_code=500)

    if origin:
        resp.headers["Access-Control-Allow-Origin"] = origin
        resp.headers["Access-Control-Allow-Credentials"] = "true"
        resp.headers["Access-Control-Allow-Methods"] = "*"
        resp.headers["Access-Control-Allow-Headers"] = (
            request.headers.get("access-control-request-headers", "*") or "*"
        )
        resp.headers["Vary"] = "Origin"
    return resp


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(SecurityHeadersMiddleware)

if not settings.is_testing:
    app.add_middleware(
        RateLimitMiddleware,
        exclude_paths=["/health", "/docs", "/openapi.json", "/redoc"],
    )

# Added last so it runs first: every other layer sees paths without /api.
app.add_middleware(ApiPrefixMiddleware)

app.include_router(auth_module.router)
app.include_router(credits_module.router)
app.include_router(transcriptions_module.router)
app.include_router(integrations_module.router)
app.include_router(webhook_module.router)


@app.get("/health")
async def health_check():
    """Health check endpoint with database and integration status."""
    from app.database import engine
    from sqlalchemy import text

    db_status = "unknown"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "version": VERSION,
        "environment": settings.environment,
        "database": db_status,
        "integrations": {
            "assemblyai": bool(settings.assemblyai_api_key),
            "google_drive": bool(settings.google_client_id and settings.google_client_secret),
            "paddle": bool(settings.paddle_webhook_secret),
        },
    }
