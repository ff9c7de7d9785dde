from datetime import timedelta
from unittest.mock import MagicMock

from custody.domain.models import CaseStatus, CredentialRecord, FilingCase
from custody.domain.secrets.retention import CredentialRetentionService, purge_reason
from conftest import NOW

CUTOFF = NOW - timedelta(days=90)


def _case(case_id, status, created_days_ago=200, completed_days_ago=None):
    return FilingCase(
        case_id=case_id,
        owner_user_id="owner-1",
        assigned_handler_id="handler-1",
        status=status,
        created_at=NOW - timedelta(days=created_days_ago),
        completed_at=NOW - timedelta(days=completed_days_ago) if completed_days_ago is not None else None,
    )


def test_purge_reason():
    assert purge_reason(None, CUTOFF) == "Case not found"
    assert purge_reason(_case("c", CaseStatus.COMPLETED, completed_days_ago=91), CUTOFF).startswith(
        "Retention period expired"
    )
    assert purge_reason(_case("c", CaseStatus.COMPLETED, completed_days_ago=30), CUTOFF) is None
    assert purge_reason(_case("c", CaseStatus.COMPLETED), CUTOFF) == (
        f"Retention period expired (completed: {(NOW - timedelta(days=200)).isoformat()})"
    )
    assert purge_reason(_case("c", CaseStatus.COMPLETED, created_days_ago=10), CUTOFF) is None
    assert purge_reason(_case("c", CaseStatus.REJECTED), CUTOFF) == "Rejected case retention period expired"
    assert purge_reason(_case("c", CaseStatus.REJECTED, created_days_ago=10), CUTOFF) is None
    assert purge_reason(_case("c", CaseStatus.IN_PROGRESS, created_days_ago=400), CUTOFF) is None


def _seed(backends, vault, case):
    # Store while the case is open, then move it to its final state.
    backends.cases.put_case(case.model_copy(update={"status": CaseStatus.IN_PROGRESS}))
    vault.store_credentials(case.case_id, "user", "pass", submitted_by="owner-1")
    backends.cases.put_case(case)


def test_purge_expired_credentials(backends, vault):
    _seed(backends, vault, _case("old-done", CaseStatus.COMPLETED, completed_days_ago=120))
    _seed(backends, vault, _case("recent-done", CaseStatus.COMPLETED, completed_days_ago=5))
    _seed(backends, vault, _case("old-rejected", CaseStatus.REJECTED))
    _seed(backends, vault, _case("open", CaseStatus.IN_PROGRESS))
    backends.credentials.put_credentials(CredentialRecord(
        case_id="orphan", encrypted_username="x", encrypted_password="y", created_at=NOW,
    ))

    report = CredentialRetentionService(vault, backends.cases, retention_days=90).purge_expired_credentials(NOW)

    assert report.checked == 5
    assert report.deleted == 3
    assert report.errors == 0
    assert sorted(d.case_id for d in report.details) == ["old-done", "old-rejected", "orphan"]
    assert sorted(backends.credentials.list_case_ids()) == ["open", "recent-done"]


def test_purge_continues_after_error(backends, vault):
    _seed(backends, vault, _case("a", CaseStatus.REJECTED))
    _seed(backends, vault, _case("b", CaseStatus.REJECTED))

    def get_case(case_id):
        if case_id == "a":
            raise RuntimeError("boom")
        return backends.cases.get_case(case_id)

    cases = MagicMock(wraps=backends.cases)
    cases.get_case.side_effect = get_case

    report = CredentialRetentionService(vault, cases).purge_expired_credentials(NOW)

    assert report.errors == 1
    assert report.deleted == 1
    assert backends.credentials.list_case_ids() == ["a"]
