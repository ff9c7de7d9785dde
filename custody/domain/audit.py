import hashlib
import logging
import threading
from datetime import datetime
from typing import Optional

from custody.domain.canonical import canonical_json_bytes
from custody.domain.interfaces import AccessLogStore
from custody.domain.models import AccessLogEntry, SubjectType, utcnow
from custody.utils.id import uuid7

logger = logging.getLogger(__name__)

ALERT_AUDIT_WRITE_FAILURE = "audit_write_failure"


def compute_entry_hash(entry: AccessLogEntry) -> str:
    """SHA-256 over the canonical form of the entry, event_hash excluded."""
    clean = entry.model_dump(mode="json", exclude={"event_hash"})
    return hashlib.sha256(canonical_json_bytes(clean)).hexdigest()


def verify_entry(entry: AccessLogEntry) -> bool:
    return bool(entry.event_hash) and entry.event_hash == compute_entry_hash(entry)


class AuditLogger:
    """Appends disclosure records.

    A failed append never blocks the caller's operation, but it is never silent
    either: it is logged at CRITICAL with an alert tag and counted so the
    readiness probe can report it.
    """

    def __init__(self, store: AccessLogStore):
        self.store = store
        self._lock = threading.Lock()
        self._failures = 0
        self._last_failure_at: Optional[datetime] = None

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    @property
    def last_failure_at(self) -> Optional[datetime]:
        with self._lock:
            return self._last_failure_at

    def build_entry(
        self,
        who: str,
        what: str,
        note: str = "",
        subject_type: SubjectType = SubjectType.CASE,
        when: Optional[datetime] = None,
    ) -> AccessLogEntry:
        entry = AccessLogEntry(
            entry_id=uuid7(),
            who=who,
            what=what,
            subject_type=subject_type,
            when=when or utcnow(),
            note=note,
        )
        return entry.model_copy(update={"event_hash": compute_entry_hash(entry)})

    def record_disclosure(
        self,
        who: str,
        what: str,
        note: str = "",
        subject_type: SubjectType = SubjectType.CASE,
        when: Optional[datetime] = None,
    ) -> Optional[AccessLogEntry]:
        """Append one entry. Returns None when the write failed (already alerted)."""
        entry = self.build_entry(who, what, note, subject_type, when)
        try:
            self.store.append_entry(entry)
        except Exception as e:
            with self._lock:
                self._failures += 1
                self._last_failure_at = utcnow()
            logger.critical(
                f"AUDIT WRITE FAILURE: {subject_type.value}={what} who={who} entry_id={entry.entry_id}: {type(e).__name__}",
                extra={"alert": ALERT_AUDIT_WRITE_FAILURE},
            )
            return None
        return entry
