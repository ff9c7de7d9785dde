from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from custody.domain.models import AccessAction, CategoryTag, ShareCodeStatus
from custody.domain.sharing.notifications import (
    document_access_notice,
    share_code_expired_notice,
    share_code_expiring_notice,
)
from custody.domain.sharing.sweeps import ShareCodeSweeper
from conftest import NOW


@pytest.fixture
def sweeper(backends, notifier):
    return ShareCodeSweeper(backends.share_codes, notifier)


@pytest.mark.asyncio
async def test_expire_share_codes(share_service, sweeper, backends, notifier):
    lapsed = share_service.issue_code("owner-1", "Lapsed", [CategoryTag.GST], raw_code="LAPSED11", now=NOW - timedelta(days=5))
    live = share_service.issue_code("owner-1", "Live", [CategoryTag.GST], raw_code="LIVECODE1", now=NOW)

    result = await sweeper.expire_share_codes(NOW)

    assert (result.processed, result.notified, result.errors) == (1, 1, 0)
    assert backends.share_codes.get_share_code(lapsed.share_code.share_code_id).status == ShareCodeStatus.EXPIRED
    assert backends.share_codes.get_share_code(live.share_code.share_code_id).status == ShareCodeStatus.ACTIVE
    assert notifier.sent[0]["title"] == "Share Code Expired"
    assert '"Lapsed"' in notifier.sent[0]["message"]

    # Already persisted as expired: nothing left to do.
    again = await sweeper.expire_share_codes(NOW)
    assert again.processed == 0


@pytest.mark.asyncio
async def test_expire_skips_revoked(share_service, sweeper, backends):
    issued = share_service.issue_code("owner-1", "Gone", [CategoryTag.GST], raw_code="GONECODE1", now=NOW - timedelta(days=6))
    share_service.revoke_code(issued.share_code.share_code_id, "owner-1", now=NOW - timedelta(days=2))

    result = await sweeper.expire_share_codes(NOW)
    assert result.processed == 0
    assert backends.share_codes.get_share_code(issued.share_code.share_code_id).status == ShareCodeStatus.REVOKED


@pytest.mark.asyncio
async def test_expire_does_not_overwrite_concurrent_revocation(share_service, backends, notifier):
    issued = share_service.issue_code("owner-1", "Raced", [CategoryTag.GST], raw_code="RACECODE1", now=NOW - timedelta(days=6))
    sc_id = issued.share_code.share_code_id
    store = MagicMock(wraps=backends.share_codes)

    def list_then_revoke(status):
        codes = backends.share_codes.list_by_status(status)
        share_service.revoke_code(sc_id, "owner-1", now=NOW)
        return codes

    store.list_by_status.side_effect = list_then_revoke

    result = await ShareCodeSweeper(store, notifier).expire_share_codes(NOW)

    assert (result.processed, result.errors) == (0, 0)
    code = backends.share_codes.get_share_code(sc_id)
    assert code.status == ShareCodeStatus.REVOKED
    assert code.revoked_at == NOW
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_expire_notification_failure_still_expires(share_service, backends):
    notifier = MagicMock()
    notifier.send = AsyncMock(side_effect=RuntimeError("down"))
    issued = share_service.issue_code("owner-1", "Lapsed", [CategoryTag.GST], raw_code="LAPSED11", now=NOW - timedelta(days=5))

    result = await ShareCodeSweeper(backends.share_codes, notifier).expire_share_codes(NOW)

    assert (result.processed, result.notified) == (1, 0)
    assert backends.share_codes.get_share_code(issued.share_code.share_code_id).status == ShareCodeStatus.EXPIRED


@pytest.mark.asyncio
async def test_notify_expiring_codes(share_service, sweeper, notifier):
    # Issued 4.5 days ago: expires in 12 hours.
    share_service.issue_code("owner-1", "Soon", [CategoryTag.GST], raw_code="SOONCODE1", now=NOW - timedelta(days=4, hours=12))
    share_service.issue_code("owner-1", "Later", [CategoryTag.GST], raw_code="LATERCODE", now=NOW)

    result = await sweeper.notify_expiring_codes(NOW)

    assert (result.processed, result.notified) == (1, 1)
    assert notifier.sent[0]["title"] == "Share Code Expiring Soon"
    assert notifier.sent[0]["share_code_name"] == "Soon"


@pytest.mark.asyncio
async def test_notify_expiring_with_interval_warns_once(share_service, sweeper, notifier):
    share_service.issue_code("owner-1", "Soon", [CategoryTag.GST], raw_code="SOONCODE1", now=NOW - timedelta(days=4, minutes=30))
    interval = timedelta(hours=1)

    first = await sweeper.notify_expiring_codes(NOW, interval=interval)
    second = await sweeper.notify_expiring_codes(NOW + interval, interval=interval)

    assert first.notified == 1
    assert second.notified == 0
    assert len(notifier.sent) == 1


def test_document_access_notice_texts():
    plain = document_access_notice("owner-1", "ITR.pdf", "Auditor", AccessAction.VIEW)
    assert plain["title"] == "Document Accessed"
    assert plain["type"] == "info"
    assert plain["message"] == 'ITR.pdf was viewed via share code "Auditor".'
    assert plain["action"] == "view"

    flagged = document_access_notice(
        "owner-1", "ITR.pdf", "Auditor", AccessAction.DOWNLOAD, suspicious=True, reason="Too fast."
    )
    assert flagged["title"] == "Suspicious Document Access"
    assert flagged["type"] == "warning"
    assert flagged["message"] == 'ITR.pdf was downloaded via share code "Auditor". Too fast.'


def test_share_code_notices():
    expiring = share_code_expiring_notice("owner-1", "Auditor", NOW)
    assert expiring["expires_at"] == NOW.isoformat()
    assert expiring["action_url"] == "/vault/sharing"

    expired = share_code_expired_notice("owner-1", "Auditor")
    assert "no longer access" in expired["message"]
