from fastapi import APIRouter, HTTPException
import logging

from custody.settings import settings
from custody.dependencies import get_audit_logger, get_backends
from custody.domain.secrets.key_material import get_master_key
from custody.errors import ConfigError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health/live")
async def liveness():
    """Liveness probe: Service is running."""
    return {"status": "ok", "checks": {"api": "ok"}}


@router.get("/health/ready")
async def readiness():
    """Readiness probe: key material loaded, record store reachable, audit trail writable."""
    health = {"status": "ok", "checks": {}}

    try:
        get_master_key()
        health["checks"]["master_key"] = "ok"
    except ConfigError:
        health["checks"]["master_key"] = "missing"
        health["status"] = "failed"

    if settings.store_backend == "postgres":
        from custody.adapters.postgres.session import check_database
        get_backends()
        if check_database():
            health["checks"]["postgres"] = "ok"
        else:
            health["checks"]["postgres"] = "failed"
            health["status"] = "failed"

    if settings.lockout_backend == "redis":
        try:
            from custody.adapters.redis.client import get_redis
            await get_redis(settings.redis_url).ping()
            health["checks"]["redis"] = "ok"
        except Exception as e:
            logger.error(f"Health check failed (redis): {e}")
            health["checks"]["redis"] = "failed"
            health["status"] = "failed"

    audit = get_audit_logger()
    failures = audit.failure_count
    health["checks"]["audit"] = "ok" if failures == 0 else "degraded"
    health["audit_write_failures"] = failures
    if audit.last_failure_at is not None:
        health["audit_last_failure_at"] = audit.last_failure_at.isoformat()

    if health["status"] == "failed":
        raise HTTPException(status_code=503, detail=health)

    return health
