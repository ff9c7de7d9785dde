import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from custody.domain.models import AccessAction, CategoryTag, VaultDocument
from custody.domain.sharing.access_log import ALERT_ACCESS_COUNTER_FAILURE, AccessLogger
from custody.domain.sharing.anomaly import AnomalyDetector
from custody.errors import NotFoundError
from conftest import NOW


@pytest.fixture
def issued(share_service, backends):
    backends.documents.put_document(VaultDocument(
        document_id="doc-1", owner_user_id="owner-1", name="GSTR-3B March.pdf", category=CategoryTag.GST,
    ))
    return share_service.issue_code("owner-1", "Auditor", [CategoryTag.GST], raw_code="AUDIT2024", now=NOW)


@pytest.mark.asyncio
async def test_log_access_records_event_and_counter(access_logger, backends, notifier, issued):
    sc_id = issued.share_code.share_code_id
    event = await access_logger.log_access(sc_id, "doc-1", AccessAction.VIEW, "10.0.0.1", "pytest", now=NOW)

    assert event.event_id.startswith("acc_")
    assert event.owner_user_id == "owner-1"
    assert event.document_name == "GSTR-3B March.pdf"
    assert event.suspicious is False
    assert backends.document_events.list_events(sc_id) == [event]

    code = backends.share_codes.get_share_code(sc_id)
    assert code.access_count == 1
    assert code.last_accessed_at == NOW

    assert len(notifier.sent) == 1
    sent = notifier.sent[0]
    assert sent["owner_user_id"] == "owner-1"
    assert sent["message"] == 'GSTR-3B March.pdf was viewed via share code "Auditor".'
    assert sent["suspicious"] is False


@pytest.mark.asyncio
async def test_unknown_document_name_falls_back(access_logger, issued):
    event = await access_logger.log_access(
        issued.share_code.share_code_id, "doc-missing", AccessAction.DOWNLOAD, now=NOW
    )
    assert event.document_name == "Document"
    assert event.client_address == "unknown"


@pytest.mark.asyncio
async def test_sixth_rapid_access_is_flagged(access_logger, notifier, issued):
    sc_id = issued.share_code.share_code_id
    events = []
    for i in range(6):
        events.append(await access_logger.log_access(
            sc_id, "doc-1", AccessAction.VIEW, "10.0.0.1", now=NOW + timedelta(seconds=i)
        ))

    assert [e.suspicious for e in events] == [False] * 5 + [True]
    assert "High access velocity" in events[-1].suspicious_reason
    assert notifier.sent[-1]["title"] == "Suspicious Document Access"
    assert notifier.sent[-1]["type"] == "warning"


@pytest.mark.asyncio
async def test_access_after_expiry_is_flagged(access_logger, issued):
    event = await access_logger.log_access(
        issued.share_code.share_code_id, "doc-1", AccessAction.VIEW, now=NOW + timedelta(days=6)
    )
    assert event.suspicious is True
    assert "expired" in event.suspicious_reason


@pytest.mark.asyncio
async def test_unknown_share_code(access_logger, backends):
    with pytest.raises(NotFoundError):
        await access_logger.log_access("sc_missing", "doc-1", AccessAction.VIEW, now=NOW)
    assert backends.document_events.list_events("sc_missing") == []


@pytest.mark.asyncio
async def test_counter_failure_is_alerted_not_raised(backends, notifier, issued, caplog):
    share_codes = MagicMock(wraps=backends.share_codes)
    share_codes.record_access.side_effect = RuntimeError("db down")
    logger = AccessLogger(
        share_codes, backends.document_events, AnomalyDetector(backends.document_events), notifier
    )

    with caplog.at_level(logging.CRITICAL):
        event = await logger.log_access(issued.share_code.share_code_id, "doc-1", AccessAction.VIEW, now=NOW)

    assert backends.document_events.list_events(issued.share_code.share_code_id) == [event]
    alerts = [r for r in caplog.records if getattr(r, "alert", None) == ALERT_ACCESS_COUNTER_FAILURE]
    assert len(alerts) == 1
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_notifier_failure_does_not_fail_access(backends, issued, caplog):
    notifier = MagicMock()
    notifier.send = AsyncMock(side_effect=RuntimeError("webhook down"))
    logger = AccessLogger(
        backends.share_codes, backends.document_events, AnomalyDetector(backends.document_events), notifier
    )

    with caplog.at_level(logging.ERROR):
        event = await logger.log_access(issued.share_code.share_code_id, "doc-1", AccessAction.VIEW, now=NOW)

    assert event.share_code_id == issued.share_code.share_code_id
    assert backends.share_codes.get_share_code(event.share_code_id).access_count == 1
    assert "Failed to notify owner" in caplog.text


@pytest.mark.asyncio
async def test_append_failure_propagates(backends, notifier, issued):
    events = MagicMock(wraps=backends.document_events)
    events.append_event.side_effect = RuntimeError("insert failed")
    logger = AccessLogger(backends.share_codes, events, AnomalyDetector(backends.document_events), notifier)

    with pytest.raises(RuntimeError):
        await logger.log_access(issued.share_code.share_code_id, "doc-1", AccessAction.VIEW, now=NOW)

    assert backends.share_codes.get_share_code(issued.share_code.share_code_id).access_count == 0
    assert notifier.sent == []
