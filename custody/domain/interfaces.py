"""Domain interfaces for persistence stores and outbound collaborators."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Collection, List, Optional, Dict, Any, Protocol

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


class CaseStore(ABC):
    @abstractmethod
    def get_case(self, case_id: str) -> Optional[FilingCase]: pass
    @abstractmethod
    def put_case(self, case: FilingCase) -> None: pass


class CredentialStore(ABC):
    @abstractmethod
    def get_credentials(self, case_id: str) -> Optional[CredentialRecord]: pass
    @abstractmethod
    def put_credentials(self, record: CredentialRecord) -> None:
        """Single atomic write; replaces any earlier record for the case."""
    @abstractmethod
    def delete_credentials(self, case_id: str) -> bool: pass
    @abstractmethod
    def list_case_ids(self) -> List[str]: pass


class AccessLogStore(ABC):
    """Append-only. There is deliberately no update or delete."""

    @abstractmethod
    def append_entry(self, entry: AccessLogEntry) -> None: pass
    @abstractmethod
    def list_entries(self, what: Optional[str] = None, limit: int = 100) -> List[AccessLogEntry]: pass


class ShareCodeStore(ABC):
    @abstractmethod
    def get_share_code(self, share_code_id: str) -> Optional[ShareCode]: pass
    @abstractmethod
    def put_share_code(self, code: ShareCode) -> None: pass
    @abstractmethod
    def list_by_prefix(self, owner_prefix: str) -> List[ShareCode]: pass
    @abstractmethod
    def find_legacy(self, code_hash: str) -> Optional[ShareCode]: pass
    @abstractmethod
    def list_for_owner(self, owner_user_id: str) -> List[ShareCode]: pass
    @abstractmethod
    def list_by_status(self, status: ShareCodeStatus) -> List[ShareCode]: pass
    @abstractmethod
    def update_status(
        self, share_code_id: str, status: ShareCodeStatus, changed_at: datetime,
        expected: Collection[ShareCodeStatus],
    ) -> bool:
        """Set status only if the current status is in expected. False when it is not."""
    @abstractmethod
    def record_access(self, share_code_id: str, accessed_at: datetime) -> None:
        """Increment access_count and set last_accessed_at in one write."""


class DocumentAccessStore(ABC):
    """Append-only log of third-party document access."""

    @abstractmethod
    def append_event(self, event: DocumentAccessEvent) -> None: pass
    @abstractmethod
    def list_recent_events(
        self,
        owner_user_id: str,
        share_code_id: str,
        since: datetime,
        limit: int = 200,
    ) -> List[DocumentAccessEvent]:
        """Newest first, bounded by since and limit."""
    @abstractmethod
    def list_events(self, share_code_id: str, limit: int = 100) -> List[DocumentAccessEvent]: pass


class DocumentStore(ABC):
    @abstractmethod
    def get_document(self, document_id: str) -> Optional[VaultDocument]: pass
    @abstractmethod
    def list_documents(self, owner_user_id: str, categories: List[CategoryTag]) -> List[VaultDocument]: pass


class NotificationSender(Protocol):
    async def send(self, owner_user_id: str, notification: Dict[str, Any]) -> None:
        """Best-effort delivery of one owner notification."""
        ...


@dataclass
class StoreBackends:
    """One record store, as the set of ports the services consume."""
    cases: CaseStore
    credentials: CredentialStore
    access_log: AccessLogStore
    share_codes: ShareCodeStore
    document_events: DocumentAccessStore
    documents: DocumentStore
