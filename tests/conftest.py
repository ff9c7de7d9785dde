import os
import time

# Settings are read at import time; these must be in place before custody is imported.
TEST_MASTER_KEY_HEX = "5f" * 32
TEST_JWT_SECRET = "test-identity-secret-with-enough-length"

os.environ["CREDENTIAL_MASTER_KEY"] = TEST_MASTER_KEY_HEX
os.environ["IDENTITY_JWT_SECRET"] = TEST_JWT_SECRET
os.environ["STORE_BACKEND"] = "memory"
os.environ["LOCKOUT_BACKEND"] = "memory"
os.environ["SWEEP_ENABLED"] = "false"
os.environ["TRACING_ENABLED"] = "false"

import jwt
import pytest
from datetime import datetime, timedelta, timezone

from custody.adapters.memory_store.stores import build_memory_backends
from custody.adapters.notifications.senders import RecordingNotificationSender
from custody.core.rate_limiter import FailedAttemptLimiter, MemoryLockoutStorage
from custody.domain.audit import AuditLogger
from custody.domain.models import CaseStatus, FilingCase
from custody.domain.secrets.cipher import CredentialCipher
from custody.domain.secrets.key_material import reset_master_key
from custody.domain.secrets.vault import CredentialVault
from custody.domain.sharing.access_log import AccessLogger
from custody.domain.sharing.anomaly import AnomalyDetector, AnomalyPolicy
from custody.domain.sharing.service import ShareCodeService

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_token(sub: str, secret: str = TEST_JWT_SECRET, expires_in: int = 300, **claims) -> str:
    payload = {"sub": sub, "exp": int(time.time()) + expires_in, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_header(sub: str) -> dict:
    return {"Authorization": f"Bearer {make_token(sub)}"}


@pytest.fixture(autouse=True)
def _fresh_master_key():
    reset_master_key()
    yield
    reset_master_key()


@pytest.fixture
def backends():
    return build_memory_backends()


@pytest.fixture
def cipher():
    return CredentialCipher(bytes.fromhex(TEST_MASTER_KEY_HEX))


@pytest.fixture
def audit_logger(backends):
    return AuditLogger(backends.access_log)


@pytest.fixture
def vault(backends, cipher, audit_logger):
    return CredentialVault(backends.cases, backends.credentials, cipher, audit_logger)


@pytest.fixture
def assigned_case(backends):
    case = FilingCase(
        case_id="case-1",
        owner_user_id="owner-1",
        assigned_handler_id="handler-1",
        status=CaseStatus.IN_PROGRESS,
        created_at=NOW - timedelta(days=10),
    )
    backends.cases.put_case(case)
    return case


@pytest.fixture
def notifier():
    return RecordingNotificationSender()


@pytest.fixture
def limiter():
    return FailedAttemptLimiter(MemoryLockoutStorage(), max_attempts=5, window_seconds=3600, lockout_seconds=900)


@pytest.fixture
def access_logger(backends, notifier):
    detector = AnomalyDetector(backends.document_events, AnomalyPolicy())
    return AccessLogger(
        backends.share_codes,
        backends.document_events,
        detector,
        notifier,
        documents=backends.documents,
    )


@pytest.fixture
def share_service(backends, access_logger, limiter):
    return ShareCodeService(
        backends.share_codes,
        backends.document_events,
        backends.documents,
        access_logger,
        limiter,
        expiry_days=5,
    )


@pytest.fixture
def auth_headers():
    return auth_header
