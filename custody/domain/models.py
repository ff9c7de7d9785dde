"""Custody Domain Models."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes coming back from stores that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CaseStatus(str, Enum):
    INTAKE = "intake"
    IN_PROGRESS = "in_progress"
    FILED = "filed"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (CaseStatus.COMPLETED, CaseStatus.REJECTED)


class FilingCase(BaseModel):
    """One tax-filing engagement."""
    case_id: str = Field(..., min_length=1)
    owner_user_id: str = Field(..., min_length=1)
    assigned_handler_id: Optional[str] = None
    status: CaseStatus = CaseStatus.INTAKE
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @field_validator("created_at", "completed_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class CredentialRecord(BaseModel):
    """Encrypted portal login for one case. Fields hold EncryptedSecret blobs."""
    model_config = ConfigDict(frozen=True)

    case_id: str
    encrypted_username: str
    encrypted_password: str
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class DisclosedCredentials(BaseModel):
    """Plaintext result of an authorized retrieval."""
    model_config = ConfigDict(frozen=True)

    case_id: str
    username: str
    password: str = Field(..., repr=False)
    accessed_at: datetime


class SubjectType(str, Enum):
    CASE = "case"
    DOCUMENT = "document"


class AccessLogEntry(BaseModel):
    """Immutable disclosure fact: who saw what, when."""
    model_config = ConfigDict(frozen=True)

    entry_id: str
    who: str
    what: str
    subject_type: SubjectType = SubjectType.CASE
    when: datetime
    note: str = ""
    event_hash: str = ""

    @field_validator("when")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class CategoryTag(str, Enum):
    INCOME_TAX = "Income Tax"
    GST = "GST"
    MCA = "MCA"
    REGISTRATIONS = "Registrations & Licenses"
    POLICIES = "Policies & Insurance"
    PERSONAL = "Personal Documents"
    BANKING = "Banking & Financial"
    LEGAL = "Legal Documents"
    PROPERTY = "Property & Real Estate"
    COMPLIANCE = "Compliance & Certifications"
    CONTRACTS = "Contracts & Agreements"
    FINANCIAL_STATEMENTS = "Financial Statements & Reports"
    PAYROLL = "Payroll & HR"
    OTHERS = "Others"


class ShareCodeStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ShareCode(BaseModel):
    """A third-party grant over some of an owner's document categories.

    The raw code is never stored; code_hash is sha256("{raw}:{owner}").
    """
    share_code_id: str
    owner_user_id: str
    code_name: str
    description: Optional[str] = None
    owner_prefix: Optional[str] = None  # None for legacy codes
    code_hash: str
    categories: List[CategoryTag]
    created_at: datetime
    expires_at: datetime
    status: ShareCodeStatus = ShareCodeStatus.ACTIVE
    revoked_at: Optional[datetime] = None
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None

    @field_validator("created_at", "expires_at", "revoked_at", "last_accessed_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class AccessAction(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"


class DocumentAccessEvent(BaseModel):
    """One third-party view or download, with the suspicion verdict frozen in."""
    model_config = ConfigDict(frozen=True)

    event_id: str
    share_code_id: str
    owner_user_id: str
    document_id: str
    document_name: str = "Document"
    action: AccessAction
    client_address: str = "unknown"
    user_agent: str = "unknown"
    occurred_at: datetime
    suspicious: bool = False
    suspicious_reason: Optional[str] = None

    @field_validator("occurred_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class VaultDocument(BaseModel):
    """Read-only projection of an owner's stored document."""
    document_id: str
    owner_user_id: str
    name: str
    category: CategoryTag


class SuspicionVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    suspicious: bool = False
    reason: Optional[str] = None
