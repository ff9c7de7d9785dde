"""Access Logger: records every third-party view or download.

The suspicion verdict is computed from history committed before this event
and frozen into the record. Only the append itself can fail the call; the
counter update and the owner notification are best-effort.
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from fastapi.concurrency import run_in_threadpool

from custody.domain.interfaces import (
    DocumentAccessStore,
    DocumentStore,
    NotificationSender,
    ShareCodeStore,
)
from custody.domain.models import (
    AccessAction,
    DocumentAccessEvent,
    ShareCode,
    ShareCodeStatus,
    SuspicionVerdict,
    utcnow,
)
from custody.errors import NotFoundError
from custody.utils.id import prefixed_id
from .anomaly import AnomalyDetector
from .notifications import document_access_notice

logger = logging.getLogger(__name__)

ALERT_ACCESS_COUNTER_FAILURE = "share_code_access_counter_failure"
DEFAULT_DOCUMENT_NAME = "Document"


class AccessLogger:
    def __init__(
        self,
        share_codes: ShareCodeStore,
        events: DocumentAccessStore,
        detector: AnomalyDetector,
        notifier: NotificationSender,
        documents: Optional[DocumentStore] = None,
    ):
        self.share_codes = share_codes
        self.events = events
        self.detector = detector
        self.notifier = notifier
        self.documents = documents

    def _document_name(self, document_id: str) -> str:
        if self.documents is None:
            return DEFAULT_DOCUMENT_NAME
        try:
            doc = self.documents.get_document(document_id)
        except Exception as e:
            logger.warning(f"Document lookup failed for document={document_id}: {e}")
            return DEFAULT_DOCUMENT_NAME
        return doc.name if doc else DEFAULT_DOCUMENT_NAME

    async def log_access(
        self,
        share_code_id: str,
        document_id: str,
        action: AccessAction,
        client_address: str = "unknown",
        user_agent: str = "unknown",
        now: Optional[datetime] = None,
    ) -> DocumentAccessEvent:
        now = now or utcnow()
        code, event, verdict = await run_in_threadpool(
            self._record, share_code_id, document_id, action, client_address, user_agent, now
        )

        try:
            await self.notifier.send(
                code.owner_user_id,
                document_access_notice(
                    code.owner_user_id,
                    event.document_name,
                    code.code_name,
                    action,
                    suspicious=verdict.suspicious,
                    reason=verdict.reason,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to notify owner of access on share_code={share_code_id}: {e}")

        return event

    def _record(
        self,
        share_code_id: str,
        document_id: str,
        action: AccessAction,
        client_address: str,
        user_agent: str,
        now: datetime,
    ) -> Tuple[ShareCode, DocumentAccessEvent, SuspicionVerdict]:
        code = self.share_codes.get_share_code(share_code_id)
        if code is None:
            raise NotFoundError("share_code", share_code_id)

        verdict = self.detector.check_suspicious_activity(
            code.owner_user_id,
            share_code_id,
            client_address,
            now,
            expires_at=code.expires_at,
            revoked=code.status == ShareCodeStatus.REVOKED,
        )

        event = DocumentAccessEvent(
            event_id=prefixed_id("acc"),
            share_code_id=share_code_id,
            owner_user_id=code.owner_user_id,
            document_id=document_id,
            document_name=self._document_name(document_id),
            action=action,
            client_address=client_address or "unknown",
            user_agent=user_agent or "unknown",
            occurred_at=now,
            suspicious=verdict.suspicious,
            suspicious_reason=verdict.reason,
        )
        self.events.append_event(event)

        try:
            self.share_codes.record_access(share_code_id, now)
        except Exception as e:
            logger.critical(
                f"Failed to update access counter for share_code={share_code_id}: {e}",
                extra={"alert": ALERT_ACCESS_COUNTER_FAILURE},
            )
        return code, event, verdict
