"""Filing Custody Service - Main Application."""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from custody.settings import settings
from custody.api.credentials import router as credentials_router
from custody.api.sharing import router as sharing_router
from custody.routers import health
from custody.errors import ConfigError
from custody.jobs.sweeper import sweep_worker
from custody.logging_hardening import setup_logging_redaction

logger = logging.getLogger(__name__)

# Initialize logging redaction filters early
setup_logging_redaction()


def run_migrations() -> None:
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(alembic_cfg, "head")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: no key, no service. The vault never falls back to a default key.
    from custody.domain.secrets.key_material import get_master_key
    try:
        get_master_key()
    except ConfigError as e:
        logger.critical(f"CRITICAL STARTUP ERROR: {e.message}")
        raise

    if settings.run_migrations and settings.store_backend == "postgres":
        logger.info("Running DB Migrations...")
        await asyncio.to_thread(run_migrations)
        logger.info("Migrations complete.")

    shutdown_event = asyncio.Event()
    worker_task = None
    if settings.sweep_enabled:
        worker_task = asyncio.create_task(sweep_worker(shutdown_event))

    yield

    # Shutdown
    logger.info("Initiating graceful shutdown...")
    shutdown_event.set()
    if worker_task is not None:
        try:
            await asyncio.wait_for(worker_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Sweep worker shutdown timed out.")

    from custody.dependencies import get_notifier
    notifier = get_notifier()
    if hasattr(notifier, "close"):
        await notifier.close()

    if settings.lockout_backend == "redis":
        from custody.adapters.redis.client import close_redis
        await close_redis()

    logger.info("Shutdown complete.")


app = FastAPI(
    title="Filing Custody Service",
    description="Credential Vault and Share-Code Access Control",
    version="0.1.0",
    lifespan=lifespan,
)

if settings.tracing_enabled:
    from custody.observability.tracing import setup_opentelemetry
    setup_opentelemetry(app, settings.otel_exporter_otlp_endpoint, dev_mode=settings.mode == "dev")


@app.exception_handler(HTTPException)
async def custody_http_exception_handler(request: Request, exc: HTTPException):
    # Custody errors carry a top-level "error" object; keep it at the top level.
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(ConfigError)
async def config_error_handler(request: Request, exc: ConfigError):
    logger.critical(f"Configuration error serving {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=503,
        content={"error": {"code": "SERVICE_MISCONFIGURED", "message": "Service is not configured."}},
    )


app.include_router(credentials_router.router, prefix="/v1", tags=["Credentials"])
app.include_router(sharing_router.router, prefix="/v1", tags=["Sharing"])
app.include_router(health.router, tags=["Health"])
