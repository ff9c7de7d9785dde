"""Credential Vault.

Encrypts portal credentials at write time and discloses them only to the
handler assigned to the case. Authorization lives here, not in callers, and
always completes before any decryption starts.
"""
import logging
from datetime import datetime
from typing import Optional

from opentelemetry import trace

from custody.domain.audit import AuditLogger
from custody.domain.interfaces import CaseStore, CredentialStore
from custody.domain.models import CredentialRecord, DisclosedCredentials, FilingCase, SubjectType, utcnow
from custody.errors import (
    CryptoError,
    DecryptionFailedError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from .cipher import CredentialCipher

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DISCLOSURE_NOTE = "Viewed credentials for return filing"


def mask_credential(credential: Optional[str], show_chars: int = 2) -> str:
    """Mask a credential for display, keeping the first few characters."""
    if not credential or len(credential) <= show_chars:
        return "****"
    return credential[:show_chars] + "*" * max(4, len(credential) - show_chars)


class CredentialVault:
    def __init__(
        self,
        cases: CaseStore,
        credentials: CredentialStore,
        cipher: CredentialCipher,
        audit: AuditLogger,
    ):
        self.cases = cases
        self.credentials = credentials
        self.cipher = cipher
        self.audit = audit

    def _load_case(self, case_id: str) -> FilingCase:
        case = self.cases.get_case(case_id)
        if case is None:
            raise NotFoundError("case", case_id)
        return case

    def store_credentials(
        self,
        case_id: str,
        username: str,
        password: str,
        submitted_by: str,
        now: Optional[datetime] = None,
    ) -> CredentialRecord:
        """Encrypt both fields independently and persist them as one record.

        A second call for the same case supersedes the earlier record.
        """
        with tracer.start_as_current_span("vault.store_credentials") as span:
            span.set_attribute("custody.case_id", case_id)
            case = self._load_case(case_id)

            if submitted_by != case.owner_user_id:
                logger.warning(f"Credential submission denied: case={case_id} principal={submitted_by}")
                raise ForbiddenError(principal_id=submitted_by)

            if case.status.is_terminal:
                raise ValidationError(f"Case is {case.status.value}; credentials can no longer be changed.")

            record = CredentialRecord(
                case_id=case_id,
                encrypted_username=self.cipher.encrypt(username),
                encrypted_password=self.cipher.encrypt(password),
                created_at=now or utcnow(),
            )
            self.credentials.put_credentials(record)
            logger.info(f"Stored credentials for case={case_id}")
            return record

    def retrieve_credentials(
        self,
        case_id: str,
        requester_id: str,
        now: Optional[datetime] = None,
    ) -> DisclosedCredentials:
        """Decrypt credentials for the assigned handler and audit the disclosure.

        Raises:
            NotFoundError: case or credential record missing.
            ForbiddenError: requester is not the assigned handler.
            DecryptionFailedError: stored blob failed authentication.
        """
        with tracer.start_as_current_span("vault.retrieve_credentials") as span:
            span.set_attribute("custody.case_id", case_id)
            case = self._load_case(case_id)

            # Owners, admins and other handlers are all refused: assignment is the only rule.
            if not case.assigned_handler_id or requester_id != case.assigned_handler_id:
                logger.warning(f"Credential disclosure denied: case={case_id} principal={requester_id}")
                raise ForbiddenError(principal_id=requester_id)

            record = self.credentials.get_credentials(case_id)
            if record is None:
                raise NotFoundError("credentials", case_id)

            try:
                username = self.cipher.decrypt(record.encrypted_username)
                password = self.cipher.decrypt(record.encrypted_password)
            except CryptoError as e:
                logger.error(
                    f"Credential decryption failed: case={case_id} "
                    f"username_blob_len={len(record.encrypted_username)} "
                    f"password_blob_len={len(record.encrypted_password)} reason={e.message}"
                )
                raise DecryptionFailedError() from e

            accessed_at = now or utcnow()
            self.audit.record_disclosure(
                who=requester_id,
                what=case_id,
                note=DISCLOSURE_NOTE,
                subject_type=SubjectType.CASE,
                when=accessed_at,
            )

            return DisclosedCredentials(
                case_id=case_id,
                username=username,
                password=password,
                accessed_at=accessed_at,
            )

    def has_credentials(self, case_id: str) -> bool:
        return self.credentials.get_credentials(case_id) is not None

    def delete_credentials(self, case_id: str) -> bool:
        deleted = self.credentials.delete_credentials(case_id)
        if deleted:
            logger.info(f"Deleted credentials for case={case_id}")
        return deleted
