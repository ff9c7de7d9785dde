"""SQLAlchemy Models for the custody record store."""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class FilingCaseRow(Base):
    """Filing case as seen by the vault: owner, handler and status only."""
    __tablename__ = "filing_cases"
    case_id = Column(String(255), primary_key=True)
    owner_user_id = Column(String(255), nullable=False, index=True)
    assigned_handler_id = Column(String(255), nullable=True)
    status = Column(String(32), nullable=False, default="intake")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime(timezone=True), nullable=True)


class CaseCredential(Base):
    """Encrypted portal credentials. One row per case; both blobs are written together."""
    __tablename__ = "case_credentials"
    case_id = Column(String(255), primary_key=True)
    encrypted_username = Column(Text, nullable=False)
    encrypted_password = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class AccessLogRow(Base):
    """Append-only credential disclosure log."""
    __tablename__ = "access_log"
    entry_id = Column(String(64), primary_key=True)
    who = Column(String(255), nullable=False)
    what = Column(String(255), nullable=False)
    subject_type = Column(String(32), nullable=False, default="case")
    when = Column(DateTime(timezone=True), nullable=False)
    note = Column(Text, nullable=False, default="")
    event_hash = Column(String(64), nullable=False)

    __table_args__ = (
        Index("idx_access_log_what_when", "what", "when"),
    )


class ShareCodeRow(Base):
    __tablename__ = "share_codes"
    share_code_id = Column(String(64), primary_key=True)
    owner_user_id = Column(String(255), nullable=False, index=True)
    code_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    owner_prefix = Column(String(16), nullable=True, index=True)  # NULL for legacy codes
    code_hash = Column(String(64), nullable=False, index=True)
    categories = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(16), nullable=False, default="active", index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    access_count = Column(Integer, nullable=False, default=0)
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)


class DocumentAccessEventRow(Base):
    """Append-only log of third-party document views and downloads."""
    __tablename__ = "document_access_events"
    event_id = Column(String(64), primary_key=True)
    share_code_id = Column(String(64), nullable=False)
    owner_user_id = Column(String(255), nullable=False)
    document_id = Column(String(255), nullable=False)
    document_name = Column(String(512), nullable=False, default="Document")
    action = Column(String(16), nullable=False)
    client_address = Column(String(64), nullable=False, default="unknown")
    user_agent = Column(Text, nullable=False, default="unknown")
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    suspicious = Column(Boolean, nullable=False, default=False)
    suspicious_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_doc_access_code_time", "share_code_id", "occurred_at"),
        Index("idx_doc_access_owner_code_time", "owner_user_id", "share_code_id", "occurred_at"),
    )


class VaultDocumentRow(Base):
    """Read-only projection of vault documents, maintained by the document service."""
    __tablename__ = "vault_documents"
    document_id = Column(String(255), primary_key=True)
    owner_user_id = Column(String(255), nullable=False, index=True)
    name = Column(String(512), nullable=False)
    category = Column(String(64), nullable=False)
