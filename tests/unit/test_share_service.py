import threading
from contextlib import ExitStack
from datetime import timedelta
from unittest.mock import patch

import pytest

from custody.domain.models import (
    AccessAction,
    CategoryTag,
    ShareCode,
    ShareCodeStatus,
    VaultDocument,
)
from custody.domain.sharing.codes import derive_prefix, hash_legacy_code
from custody.domain.sharing.service import INVALID_CODE_MESSAGE
from custody.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    RateLimitedError,
    ShareCodeInactiveError,
    ValidationError,
)
from conftest import NOW


@pytest.fixture
def documents(backends):
    docs = [
        VaultDocument(document_id="doc-gst", owner_user_id="owner-1", name="GSTR-1.pdf", category=CategoryTag.GST),
        VaultDocument(document_id="doc-itr", owner_user_id="owner-1", name="ITR-V.pdf", category=CategoryTag.INCOME_TAX),
        VaultDocument(document_id="doc-other", owner_user_id="owner-2", name="Deed.pdf", category=CategoryTag.GST),
    ]
    for doc in docs:
        backends.documents.put_document(doc)
    return docs


def test_issue_code(share_service, backends):
    issued = share_service.issue_code("owner-1", " Auditor ", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)

    code = issued.share_code
    assert issued.full_code == f"{derive_prefix('owner-1')}-AUDIT2024"
    assert code.share_code_id.startswith("sc_")
    assert code.code_name == "Auditor"
    assert code.owner_prefix == derive_prefix("owner-1")
    assert code.expires_at == NOW + timedelta(days=5)
    assert code.status == ShareCodeStatus.ACTIVE
    assert "AUDIT2024" not in code.code_hash
    assert backends.share_codes.get_share_code(code.share_code_id) == code


def test_issue_generates_code_when_omitted(share_service):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], now=NOW)
    prefix, raw = issued.full_code.rsplit("-", 1)
    assert prefix == derive_prefix("owner-1")
    assert len(raw) == 12


def test_issue_deduplicates_categories(share_service):
    issued = share_service.issue_code(
        "owner-1", "Auditor", [CategoryTag.GST, CategoryTag.GST, CategoryTag.MCA], raw_code="AUDIT2024"
    )
    assert issued.share_code.categories == [CategoryTag.GST, CategoryTag.MCA]


@pytest.mark.parametrize("name,categories,raw", [
    ("", [CategoryTag.GST], "AUDIT2024"),
    ("Auditor", [], "AUDIT2024"),
    ("Auditor", [CategoryTag.GST], "short"),
    ("Auditor", [CategoryTag.GST], "not-alnum!"),
])
def test_issue_validation(share_service, name, categories, raw):
    with pytest.raises(ValidationError):
        share_service.issue_code("owner-1", name, categories, raw_code=raw)


def test_same_raw_code_rejected_for_same_owner_only(share_service):
    share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024")
    with pytest.raises(ValidationError):
        share_service.issue_code("owner-1", "Auditor 2", [CategoryTag.GST], raw_code="AUDIT2024")

    other = share_service.issue_code("owner-2", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024")
    assert other.full_code.endswith("-AUDIT2024")


@pytest.mark.asyncio
async def test_same_raw_code_resolves_per_owner(share_service):
    first = share_service.issue_code("owner-1", "A", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    second = share_service.issue_code("owner-2", "B", [CategoryTag.MCA], raw_code="AUDIT2024", now=NOW)

    grant_1 = await share_service.redeem_code(first.full_code, "10.0.0.1", now=NOW)
    grant_2 = await share_service.redeem_code(second.full_code, "10.0.0.1", now=NOW)
    assert grant_1.owner_user_id == "owner-1"
    assert grant_2.owner_user_id == "owner-2"
    assert grant_2.categories == (CategoryTag.MCA,)


@pytest.mark.asyncio
async def test_redeem_valid_code(share_service):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    grant = await share_service.redeem_code(issued.full_code, "10.0.0.1", now=NOW + timedelta(days=1))
    assert grant.share_code_id == issued.share_code.share_code_id
    assert grant.code_name == "Auditor"
    assert grant.expires_at == issued.share_code.expires_at


@pytest.mark.asyncio
async def test_redeem_wrong_prefix_is_rejected(share_service):
    share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    forged = f"{derive_prefix('owner-2')}-AUDIT2024"
    with pytest.raises(ForbiddenError) as exc:
        await share_service.redeem_code(forged, "10.0.0.1", now=NOW)
    assert exc.value.message == INVALID_CODE_MESSAGE


@pytest.mark.asyncio
async def test_redeem_expired_code(share_service):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    with pytest.raises(ShareCodeInactiveError) as exc:
        await share_service.redeem_code(issued.full_code, "10.0.0.1", now=NOW + timedelta(days=5))
    assert exc.value.state == "expired"


@pytest.mark.asyncio
async def test_inactive_code_does_not_count_towards_lockout(share_service):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    share_service.revoke_code(issued.share_code.share_code_id, "owner-1", now=NOW)
    for _ in range(6):
        with pytest.raises(ShareCodeInactiveError):
            await share_service.redeem_code(issued.full_code, "10.0.0.1", now=NOW)


@pytest.mark.asyncio
async def test_lockout_after_five_failures(share_service):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    for i in range(5):
        with pytest.raises(ForbiddenError):
            await share_service.redeem_code(f"WRONGCODE{i}", "10.0.0.9", now=NOW)

    # Even the right code is refused while locked.
    with pytest.raises(RateLimitedError) as exc:
        await share_service.redeem_code(issued.full_code, "10.0.0.9", now=NOW + timedelta(minutes=1))
    assert exc.value.locked_until == NOW + timedelta(minutes=15)

    # Other addresses are unaffected.
    await share_service.redeem_code(issued.full_code, "10.0.0.10", now=NOW)

    grant = await share_service.redeem_code(issued.full_code, "10.0.0.9", now=NOW + timedelta(minutes=16))
    assert grant.owner_user_id == "owner-1"


@pytest.mark.asyncio
async def test_success_resets_failures(share_service):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    for _ in range(4):
        with pytest.raises(ForbiddenError):
            await share_service.redeem_code("WRONGCODE1", "10.0.0.9", now=NOW)
    await share_service.redeem_code(issued.full_code, "10.0.0.9", now=NOW)
    for _ in range(4):
        with pytest.raises(ForbiddenError):
            await share_service.redeem_code("WRONGCODE1", "10.0.0.9", now=NOW)
    await share_service.redeem_code(issued.full_code, "10.0.0.9", now=NOW)


@pytest.mark.asyncio
async def test_legacy_code_still_redeems(share_service, backends):
    backends.share_codes.put_share_code(ShareCode(
        share_code_id="sc_legacy",
        owner_user_id="owner-1",
        code_name="Old code",
        owner_prefix=None,
        code_hash=hash_legacy_code("OLDCODE99"),
        categories=[CategoryTag.GST],
        created_at=NOW,
        expires_at=NOW + timedelta(days=5),
    ))
    grant = await share_service.redeem_code("OLDCODE99", "10.0.0.1", now=NOW)
    assert grant.share_code_id == "sc_legacy"


def test_revoke_is_terminal(share_service, backends):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    sc_id = issued.share_code.share_code_id

    revoked = share_service.revoke_code(sc_id, "owner-1", now=NOW)
    assert revoked.status == ShareCodeStatus.REVOKED
    assert revoked.revoked_at == NOW
    assert backends.share_codes.get_share_code(sc_id).status == ShareCodeStatus.REVOKED

    with pytest.raises(InvalidTransitionError):
        share_service.revoke_code(sc_id, "owner-1", now=NOW)


def test_revoke_loses_to_concurrent_revocation(share_service, backends):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    sc_id = issued.share_code.share_code_id
    stale = backends.share_codes.get_share_code(sc_id)
    share_service.revoke_code(sc_id, "owner-1", now=NOW)

    with patch.object(share_service.share_codes, "get_share_code", return_value=stale):
        with pytest.raises(InvalidTransitionError):
            share_service.revoke_code(sc_id, "owner-1", now=NOW + timedelta(hours=1))

    assert backends.share_codes.get_share_code(sc_id).revoked_at == NOW


def test_revoke_expired_code_is_allowed(share_service):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    revoked = share_service.revoke_code(issued.share_code.share_code_id, "owner-1", now=NOW + timedelta(days=9))
    assert revoked.status == ShareCodeStatus.REVOKED


def test_revoke_requires_owner(share_service):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    with pytest.raises(ForbiddenError):
        share_service.revoke_code(issued.share_code.share_code_id, "owner-2", now=NOW)
    with pytest.raises(NotFoundError):
        share_service.revoke_code("sc_missing", "owner-1", now=NOW)


def test_list_codes_reports_effective_state(share_service):
    share_service.issue_code("owner-1", "Old", [CategoryTag.GST], raw_code="OLDCODE11", now=NOW - timedelta(days=6))
    share_service.issue_code("owner-1", "New", [CategoryTag.GST], raw_code="NEWCODE11", now=NOW)
    share_service.issue_code("owner-2", "Theirs", [CategoryTag.GST], raw_code="NEWCODE11", now=NOW)

    codes = share_service.list_codes("owner-1", now=NOW)
    assert [(c.code_name, c.status) for c in codes] == [
        ("New", ShareCodeStatus.ACTIVE),
        ("Old", ShareCodeStatus.EXPIRED),
    ]


@pytest.mark.asyncio
async def test_shared_documents_limited_to_granted_categories(share_service, documents):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    grant = await share_service.redeem_code(issued.full_code, "10.0.0.1", now=NOW)

    assert [d.document_id for d in share_service.list_shared_documents(grant)] == ["doc-gst"]
    assert share_service.authorize_document(grant, "doc-gst").name == "GSTR-1.pdf"
    for document_id in ("doc-itr", "doc-other", "doc-missing"):
        with pytest.raises(ForbiddenError):
            share_service.authorize_document(grant, document_id)


@pytest.mark.asyncio
async def test_access_document_logs_event(share_service, documents, notifier):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    doc, event = await share_service.access_document(
        issued.full_code, "doc-gst", AccessAction.DOWNLOAD, "10.0.0.1", "curl/8", now=NOW
    )
    assert doc.document_id == "doc-gst"
    assert event.action == AccessAction.DOWNLOAD
    assert event.user_agent == "curl/8"

    events = share_service.list_access_events(issued.share_code.share_code_id, "owner-1")
    assert events == [event]
    assert notifier.sent[0]["message"] == 'GSTR-1.pdf was downloaded via share code "Auditor".'

    with pytest.raises(ForbiddenError):
        share_service.list_access_events(issued.share_code.share_code_id, "owner-2")


@pytest.mark.asyncio
async def test_access_document_keeps_store_calls_off_the_event_loop(share_service, documents, backends):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    loop_thread = threading.get_ident()
    seen = []

    def tracking(method):
        def call(*args, **kwargs):
            seen.append((method.__name__, threading.get_ident()))
            return method(*args, **kwargs)
        return call

    stores = [
        (backends.share_codes, "list_by_prefix"),
        (backends.documents, "get_document"),
        (backends.document_events, "append_event"),
        (backends.share_codes, "record_access"),
    ]
    with ExitStack() as stack:
        for store, name in stores:
            stack.enter_context(patch.object(store, name, side_effect=tracking(getattr(store, name))))
        await share_service.access_document(issued.full_code, "doc-gst", AccessAction.VIEW, "10.0.0.1", now=NOW)

    assert {name for name, _ in seen} == {name for _, name in stores}
    assert all(ident != loop_thread for _, ident in seen)


@pytest.mark.asyncio
async def test_access_to_ungranted_document_is_not_logged(share_service, documents, backends):
    issued = share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)
    with pytest.raises(ForbiddenError):
        await share_service.access_document(issued.full_code, "doc-itr", AccessAction.VIEW, "10.0.0.1", now=NOW)
    assert backends.document_events.list_events(issued.share_code.share_code_id) == []
