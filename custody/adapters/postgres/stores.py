"""Postgres Store Implementations.

Stores are long-lived and open one short session per call from the injected
session factory, so each method is its own transaction.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Collection, Dict, List, Optional

from sqlalchemy import desc, update
from sqlalchemy.orm import Session, sessionmaker

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
from custody.adapters.postgres.models import (
    AccessLogRow,
    CaseCredential,
    DocumentAccessEventRow,
    FilingCaseRow,
    ShareCodeRow,
    VaultDocumentRow,
)

logger = logging.getLogger(__name__)


def to_row_values(model) -> Dict[str, Any]:
    """Model fields as column values: enums flattened, datetimes kept as objects."""
    data = model.model_dump()
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.value
        elif isinstance(value, list):
            data[key] = [v.value if isinstance(v, Enum) else v for v in value]
    return data


def to_dict(obj) -> Optional[Dict[str, Any]]:
    if not obj:
        return None
    return {c.name: getattr(obj, c.name) for c in obj.__table__.columns}


class _SqlStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _session(self) -> Session:
        return self.session_factory()


class PostgresCaseStore(_SqlStore, CaseStore):
    def get_case(self, case_id: str) -> Optional[FilingCase]:
        with self._session() as db:
            row = db.get(FilingCaseRow, case_id)
            return FilingCase(**to_dict(row)) if row else None

    def put_case(self, case: FilingCase) -> None:
        with self._session() as db:
            db.merge(FilingCaseRow(**to_row_values(case)))
            db.commit()


class PostgresCredentialStore(_SqlStore, CredentialStore):
    def get_credentials(self, case_id: str) -> Optional[CredentialRecord]:
        with self._session() as db:
            row = db.get(CaseCredential, case_id)
            return CredentialRecord(**to_dict(row)) if row else None

    def put_credentials(self, record: CredentialRecord) -> None:
        # merge writes both blobs in one row update, never one field at a time
        with self._session() as db:
            db.merge(CaseCredential(**to_row_values(record)))
            db.commit()

    def delete_credentials(self, case_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(CaseCredential).filter(CaseCredential.case_id == case_id).delete(
                synchronize_session=False
            )
            db.commit()
            return deleted > 0

    def list_case_ids(self) -> List[str]:
        with self._session() as db:
            return [row[0] for row in db.query(CaseCredential.case_id).all()]


class PostgresAccessLogStore(_SqlStore, AccessLogStore):
    def append_entry(self, entry: AccessLogEntry) -> None:
        with self._session() as db:
            db.add(AccessLogRow(**to_row_values(entry)))
            db.commit()

    def list_entries(self, what: Optional[str] = None, limit: int = 100) -> List[AccessLogEntry]:
        with self._session() as db:
            q = db.query(AccessLogRow)
            if what is not None:
                q = q.filter(AccessLogRow.what == what)
            rows = q.order_by(desc(AccessLogRow.when)).limit(limit).all()
            return [AccessLogEntry(**to_dict(r)) for r in rows]


class PostgresShareCodeStore(_SqlStore, ShareCodeStore):
    def get_share_code(self, share_code_id: str) -> Optional[ShareCode]:
        with self._session() as db:
            row = db.get(ShareCodeRow, share_code_id)
            return ShareCode(**to_dict(row)) if row else None

    def put_share_code(self, code: ShareCode) -> None:
        with self._session() as db:
            db.merge(ShareCodeRow(**to_row_values(code)))
            db.commit()

    def list_by_prefix(self, owner_prefix: str) -> List[ShareCode]:
        with self._session() as db:
            rows = db.query(ShareCodeRow).filter(ShareCodeRow.owner_prefix == owner_prefix).all()
            return [ShareCode(**to_dict(r)) for r in rows]

    def find_legacy(self, code_hash: str) -> Optional[ShareCode]:
        with self._session() as db:
            row = db.query(ShareCodeRow).filter(
                ShareCodeRow.owner_prefix.is_(None),
                ShareCodeRow.code_hash == code_hash,
            ).first()
            return ShareCode(**to_dict(row)) if row else None

    def list_for_owner(self, owner_user_id: str) -> List[ShareCode]:
        with self._session() as db:
            rows = db.query(ShareCodeRow).filter(
                ShareCodeRow.owner_user_id == owner_user_id
            ).order_by(desc(ShareCodeRow.created_at)).all()
            return [ShareCode(**to_dict(r)) for r in rows]

    def list_by_status(self, status: ShareCodeStatus) -> List[ShareCode]:
        with self._session() as db:
            rows = db.query(ShareCodeRow).filter(ShareCodeRow.status == status.value).all()
            return [ShareCode(**to_dict(r)) for r in rows]

    def update_status(
        self, share_code_id: str, status: ShareCodeStatus, changed_at: datetime,
        expected: Collection[ShareCodeStatus],
    ) -> bool:
        values: Dict[str, Any] = {"status": status.value}
        if status == ShareCodeStatus.REVOKED:
            values["revoked_at"] = changed_at
        with self._session() as db:
            # Compare-and-set: a concurrent writer that already moved the code wins.
            result = db.execute(
                update(ShareCodeRow)
                .where(
                    ShareCodeRow.share_code_id == share_code_id,
                    ShareCodeRow.status.in_([s.value for s in expected]),
                )
                .values(**values)
            )
            db.commit()
            if result.rowcount == 1:
                return True
            if db.get(ShareCodeRow, share_code_id) is None:
                raise KeyError(share_code_id)
            return False

    def record_access(self, share_code_id: str, accessed_at: datetime) -> None:
        # Single UPDATE so concurrent accesses never lose an increment.
        with self._session() as db:
            result = db.execute(
                update(ShareCodeRow)
                .where(ShareCodeRow.share_code_id == share_code_id)
                .values(
                    access_count=ShareCodeRow.access_count + 1,
                    last_accessed_at=accessed_at,
                )
            )
            db.commit()
            if result.rowcount == 0:
                raise KeyError(share_code_id)


class PostgresDocumentAccessStore(_SqlStore, DocumentAccessStore):
    def append_event(self, event: DocumentAccessEvent) -> None:
        with self._session() as db:
            db.add(DocumentAccessEventRow(**to_row_values(event)))
            db.commit()

    def list_recent_events(
        self,
        owner_user_id: str,
        share_code_id: str,
        since: datetime,
        limit: int = 200,
    ) -> List[DocumentAccessEvent]:
        with self._session() as db:
            rows = db.query(DocumentAccessEventRow).filter(
                DocumentAccessEventRow.owner_user_id == owner_user_id,
                DocumentAccessEventRow.share_code_id == share_code_id,
                DocumentAccessEventRow.occurred_at >= since,
            ).order_by(desc(DocumentAccessEventRow.occurred_at)).limit(limit).all()
            return [DocumentAccessEvent(**to_dict(r)) for r in rows]

    def list_events(self, share_code_id: str, limit: int = 100) -> List[DocumentAccessEvent]:
        with self._session() as db:
            rows = db.query(DocumentAccessEventRow).filter(
                DocumentAccessEventRow.share_code_id == share_code_id
            ).order_by(desc(DocumentAccessEventRow.occurred_at)).limit(limit).all()
            return [DocumentAccessEvent(**to_dict(r)) for r in rows]


class PostgresDocumentStore(_SqlStore, DocumentStore):
    def put_document(self, doc: VaultDocument) -> None:
        with self._session() as db:
            db.merge(VaultDocumentRow(**to_row_values(doc)))
            db.commit()

    def get_document(self, document_id: str) -> Optional[VaultDocument]:
        with self._session() as db:
            row = db.get(VaultDocumentRow, document_id)
            return VaultDocument(**to_dict(row)) if row else None

    def list_documents(self, owner_user_id: str, categories: List[CategoryTag]) -> List[VaultDocument]:
        if not categories:
            return []
        with self._session() as db:
            rows = db.query(VaultDocumentRow).filter(
                VaultDocumentRow.owner_user_id == owner_user_id,
                VaultDocumentRow.category.in_([c.value for c in categories]),
            ).all()
            return [VaultDocument(**to_dict(r)) for r in rows]


def build_postgres_backends(session_factory: sessionmaker) -> StoreBackends:
    return StoreBackends(
        cases=PostgresCaseStore(session_factory),
        credentials=PostgresCredentialStore(session_factory),
        access_log=PostgresAccessLogStore(session_factory),
        share_codes=PostgresShareCodeStore(session_factory),
        document_events=PostgresDocumentAccessStore(session_factory),
        documents=PostgresDocumentStore(session_factory),
    )
