"""Dependency Injection Module.

Process-wide singletons for the record store, vault and share-code services.
Tests swap them through FastAPI dependency overrides or reset_dependencies().
"""
import ipaddress
import logging
from typing import Optional

from fastapi import Request

from custody.settings import settings
from custody.core.rate_limiter import (
    FailedAttemptLimiter,
    LockoutStorage,
    MemoryLockoutStorage,
    RedisLockoutStorage,
)
from custody.domain.audit import AuditLogger
from custody.domain.auth import JwtValidator
from custody.domain.interfaces import NotificationSender, StoreBackends
from custody.domain.secrets.cipher import CredentialCipher
from custody.domain.secrets.key_material import get_master_key
from custody.domain.secrets.retention import CredentialRetentionService
from custody.domain.secrets.vault import CredentialVault
from custody.domain.sharing.access_log import AccessLogger
from custody.domain.sharing.anomaly import AnomalyDetector, AnomalyPolicy
from custody.domain.sharing.service import ShareCodeService
from custody.domain.sharing.sweeps import ShareCodeSweeper

logger = logging.getLogger(__name__)

_backends: Optional[StoreBackends] = None
_notifier: Optional[NotificationSender] = None
_audit_logger: Optional[AuditLogger] = None
_limiter: Optional[FailedAttemptLimiter] = None
_jwt_validator: Optional[JwtValidator] = None


def get_backends() -> StoreBackends:
    global _backends
    if _backends is None:
        if settings.store_backend == "postgres":
            from custody.adapters.postgres.session import get_session_factory
            from custody.adapters.postgres.stores import build_postgres_backends
            _backends = build_postgres_backends(get_session_factory(settings.database_url))
        else:
            from custody.adapters.memory_store.stores import build_memory_backends
            _backends = build_memory_backends()
        logger.info(f"Record store backend: {settings.store_backend}")
    return _backends


def get_notifier() -> NotificationSender:
    global _notifier
    if _notifier is None:
        if settings.notification_webhook_url:
            from custody.adapters.notifications.senders import WebhookNotificationSender
            api_key = settings.notification_api_key
            _notifier = WebhookNotificationSender(
                settings.notification_webhook_url,
                api_key.get_secret_value() if api_key else None,
            )
        else:
            from custody.adapters.notifications.senders import LogNotificationSender
            _notifier = LogNotificationSender()
    return _notifier


def get_cipher() -> CredentialCipher:
    """Raises ConfigError when no master key is configured."""
    return CredentialCipher(get_master_key())


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger(get_backends().access_log)
    return _audit_logger


def get_vault() -> CredentialVault:
    backends = get_backends()
    return CredentialVault(backends.cases, backends.credentials, get_cipher(), get_audit_logger())


def get_retention_service() -> CredentialRetentionService:
    return CredentialRetentionService(
        get_vault(), get_backends().cases, retention_days=settings.credential_retention_days
    )


def _lockout_storage() -> LockoutStorage:
    if settings.lockout_backend == "redis":
        from custody.adapters.redis.client import get_redis
        return RedisLockoutStorage(get_redis(settings.redis_url), fail_closed=settings.mode == "prod")
    return MemoryLockoutStorage()


def get_limiter() -> FailedAttemptLimiter:
    global _limiter
    if _limiter is None:
        _limiter = FailedAttemptLimiter(
            _lockout_storage(),
            max_attempts=settings.lockout_max_attempts,
            window_seconds=settings.lockout_window_seconds,
            lockout_seconds=settings.lockout_duration_seconds,
        )
    return _limiter


def get_access_logger() -> AccessLogger:
    backends = get_backends()
    detector = AnomalyDetector(backends.document_events, AnomalyPolicy.from_settings(settings))
    return AccessLogger(
        backends.share_codes,
        backends.document_events,
        detector,
        get_notifier(),
        documents=backends.documents,
    )


def get_share_code_service() -> ShareCodeService:
    backends = get_backends()
    return ShareCodeService(
        backends.share_codes,
        backends.document_events,
        backends.documents,
        get_access_logger(),
        get_limiter(),
        expiry_days=settings.share_code_expiry_days,
        min_code_length=settings.share_code_min_length,
    )


def get_sweeper() -> ShareCodeSweeper:
    return ShareCodeSweeper(get_backends().share_codes, get_notifier())


def get_jwt_validator() -> JwtValidator:
    global _jwt_validator
    if _jwt_validator is None:
        secret = settings.identity_jwt_secret
        _jwt_validator = JwtValidator(
            jwks_url=settings.identity_jwks_url,
            issuer=settings.identity_issuer,
            audience=settings.identity_audience,
            secret=secret.get_secret_value() if secret else None,
        )
    return _jwt_validator


def _is_trusted_proxy(host: str) -> bool:
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    for entry in settings.trusted_proxy_list:
        try:
            if addr in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning(f"Ignoring malformed trusted proxy entry: {entry}")
    return False


def get_client_address(request: Request) -> str:
    """Peer address, or the first X-Forwarded-For hop when the peer is a trusted proxy."""
    peer = request.client.host if request.client else None
    if peer and _is_trusted_proxy(peer):
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            try:
                return str(ipaddress.ip_address(first))
            except ValueError:
                logger.warning(f"Ignoring malformed X-Forwarded-For hop from proxy {peer}")
    return peer or "unknown"


def reset_dependencies() -> None:
    """Drop every cached singleton."""
    global _backends, _notifier, _audit_logger, _limiter, _jwt_validator
    _backends = None
    _notifier = None
    _audit_logger = None
    _limiter = None
    _jwt_validator = None
