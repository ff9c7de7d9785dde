"""Credential retention.

Credentials are only needed while a return is being filed. Once a case is
closed and the retention period has passed, the encrypted record is deleted.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from custody.domain.interfaces import CaseStore
from custody.domain.models import CaseStatus, FilingCase
from .vault import CredentialVault

logger = logging.getLogger(__name__)


@dataclass
class PurgeDetail:
    case_id: str
    reason: str
    error: Optional[str] = None


@dataclass
class PurgeReport:
    checked: int = 0
    deleted: int = 0
    errors: int = 0
    details: List[PurgeDetail] = field(default_factory=list)


def purge_reason(case: Optional[FilingCase], cutoff: datetime) -> Optional[str]:
    """Why a case's credentials should go, or None to keep them."""
    if case is None:
        return "Case not found"
    if case.status == CaseStatus.COMPLETED:
        completed_at = case.completed_at or case.created_at
        if completed_at < cutoff:
            return f"Retention period expired (completed: {completed_at.isoformat()})"
        return None
    if case.status == CaseStatus.REJECTED and case.created_at < cutoff:
        return "Rejected case retention period expired"
    return None


class CredentialRetentionService:
    def __init__(self, vault: CredentialVault, cases: CaseStore, retention_days: int = 90):
        self.vault = vault
        self.cases = cases
        self.retention_days = retention_days

    def purge_expired_credentials(self, now: datetime) -> PurgeReport:
        cutoff = now - timedelta(days=self.retention_days)
        report = PurgeReport()

        for case_id in self.vault.credentials.list_case_ids():
            report.checked += 1
            try:
                reason = purge_reason(self.cases.get_case(case_id), cutoff)
                if reason is None:
                    continue
                if self.vault.delete_credentials(case_id):
                    report.deleted += 1
                    report.details.append(PurgeDetail(case_id=case_id, reason=reason))
            except Exception as e:
                report.errors += 1
                report.details.append(PurgeDetail(case_id=case_id, reason="Error processing", error=str(e)))
                logger.error(f"Error purging credentials for case={case_id}: {e}")

        logger.info(
            f"Credential retention sweep: checked={report.checked} deleted={report.deleted} errors={report.errors}"
        )
        return report
