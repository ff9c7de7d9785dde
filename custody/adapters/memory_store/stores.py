"""Memory Store Implementations.

Used in dev mode and tests. Each store guards its dict with a lock so that
every mutation is a single atomic step, the same contract the SQL stores keep.
"""
import threading
from datetime import datetime
from typing import Collection, Dict, List, Optional

from custody.domain.interfaces import (
    AccessLogStore,
    CaseStore,
    CredentialStore,
    DocumentAccessStore,
    DocumentStore,
    ShareCodeStore,
    StoreBackends,
)
from custody.domain.models import (
    AccessLogEntry,
    CategoryTag,
    CredentialRecord,
    DocumentAccessEvent,
    FilingCase,
    ShareCode,
    ShareCodeStatus,
    VaultDocument,
)


class MemoryCaseStore(CaseStore):
    def __init__(self):
        self._cases: Dict[str, FilingCase] = {}
        self._lock = threading.Lock()

    def get_case(self, case_id: str) -> Optional[FilingCase]:
        with self._lock:
            return self._cases.get(case_id)

    def put_case(self, case: FilingCase) -> None:
        with self._lock:
            self._cases[case.case_id] = case


class MemoryCredentialStore(CredentialStore):
    def __init__(self):
        self._records: Dict[str, CredentialRecord] = {}
        self._lock = threading.Lock()

    def get_credentials(self, case_id: str) -> Optional[CredentialRecord]:
        with self._lock:
            return self._records.get(case_id)

    def put_credentials(self, record: CredentialRecord) -> None:
        with self._lock:
            self._records[record.case_id] = record

    def delete_credentials(self, case_id: str) -> bool:
        with self._lock:
            return self._records.pop(case_id, None) is not None

    def list_case_ids(self) -> List[str]:
        with self._lock:
            return list(self._records.keys())


class MemoryAccessLogStore(AccessLogStore):
    def __init__(self):
        self._entries: List[AccessLogEntry] = []
        self._lock = threading.Lock()

    def append_entry(self, entry: AccessLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def list_entries(self, what: Optional[str] = None, limit: int = 100) -> List[AccessLogEntry]:
        with self._lock:
            rows = [e for e in self._entries if what is None or e.what == what]
        return sorted(rows, key=lambda e: e.when, reverse=True)[:limit]


class MemoryShareCodeStore(ShareCodeStore):
    def __init__(self):
        self._codes: Dict[str, ShareCode] = {}
        self._lock = threading.Lock()

    def get_share_code(self, share_code_id: str) -> Optional[ShareCode]:
        with self._lock:
            return self._codes.get(share_code_id)

    def put_share_code(self, code: ShareCode) -> None:
        with self._lock:
            self._codes[code.share_code_id] = code

    def list_by_prefix(self, owner_prefix: str) -> List[ShareCode]:
        with self._lock:
            return [c for c in self._codes.values() if c.owner_prefix == owner_prefix]

    def find_legacy(self, code_hash: str) -> Optional[ShareCode]:
        with self._lock:
            for c in self._codes.values():
                if c.owner_prefix is None and c.code_hash == code_hash:
                    return c
        return None

    def list_for_owner(self, owner_user_id: str) -> List[ShareCode]:
        with self._lock:
            rows = [c for c in self._codes.values() if c.owner_user_id == owner_user_id]
        return sorted(rows, key=lambda c: c.created_at, reverse=True)

    def list_by_status(self, status: ShareCodeStatus) -> List[ShareCode]:
        with self._lock:
            return [c for c in self._codes.values() if c.status == status]

    def update_status(
        self, share_code_id: str, status: ShareCodeStatus, changed_at: datetime,
        expected: Collection[ShareCodeStatus],
    ) -> bool:
        with self._lock:
            code = self._codes.get(share_code_id)
            if code is None:
                raise KeyError(share_code_id)
            if code.status not in expected:
                return False
            update = {"status": status}
            if status == ShareCodeStatus.REVOKED:
                update["revoked_at"] = changed_at
            self._codes[share_code_id] = code.model_copy(update=update)
            return True

    def record_access(self, share_code_id: str, accessed_at: datetime) -> None:
        with self._lock:
            code = self._codes.get(share_code_id)
            if code is None:
                raise KeyError(share_code_id)
            self._codes[share_code_id] = code.model_copy(
                update={"access_count": code.access_count + 1, "last_accessed_at": accessed_at}
            )


class MemoryDocumentAccessStore(DocumentAccessStore):
    def __init__(self):
        self._events: List[DocumentAccessEvent] = []
        self._lock = threading.Lock()

    def append_event(self, event: DocumentAccessEvent) -> None:
        with self._lock:
            self._events.append(event)

    def list_recent_events(
        self,
        owner_user_id: str,
        share_code_id: str,
        since: datetime,
        limit: int = 200,
    ) -> List[DocumentAccessEvent]:
        with self._lock:
            rows = [
                e for e in self._events
                if e.owner_user_id == owner_user_id
                and e.share_code_id == share_code_id
                and e.occurred_at >= since
            ]
        return sorted(rows, key=lambda e: e.occurred_at, reverse=True)[:limit]

    def list_events(self, share_code_id: str, limit: int = 100) -> List[DocumentAccessEvent]:
        with self._lock:
            rows = [e for e in self._events if e.share_code_id == share_code_id]
        return sorted(rows, key=lambda e: e.occurred_at, reverse=True)[:limit]


class MemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._docs: Dict[str, VaultDocument] = {}
        self._lock = threading.Lock()

    def put_document(self, doc: VaultDocument) -> None:
        with self._lock:
            self._docs[doc.document_id] = doc

    def get_document(self, document_id: str) -> Optional[VaultDocument]:
        with self._lock:
            return self._docs.get(document_id)

    def list_documents(self, owner_user_id: str, categories: List[CategoryTag]) -> List[VaultDocument]:
        wanted = set(categories)
        with self._lock:
            return [d for d in self._docs.values() if d.owner_user_id == owner_user_id and d.category in wanted]


def build_memory_backends() -> StoreBackends:
    return StoreBackends(
        cases=MemoryCaseStore(),
        credentials=MemoryCredentialStore(),
        access_log=MemoryAccessLogStore(),
        share_codes=MemoryShareCodeStore(),
        document_events=MemoryDocumentAccessStore(),
        documents=MemoryDocumentStore(),
    )
