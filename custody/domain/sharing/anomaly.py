"""Anomaly detection for share-code document access.

`evaluate_access` is a pure function over a bounded window of prior events;
`AnomalyDetector` only adds the store query that produces that window. The
window never contains the event being judged, since the verdict is computed
before that event is appended.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from custody.domain.interfaces import DocumentAccessStore
from custody.domain.models import DocumentAccessEvent, SuspicionVerdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnomalyPolicy:
    burst_limit: int = 5
    burst_window_seconds: int = 60
    max_distinct_addresses: int = 5
    max_same_address_events: int = 20
    address_window_seconds: int = 3600
    history_limit: int = 200

    @property
    def lookback(self) -> timedelta:
        return timedelta(seconds=max(self.burst_window_seconds, self.address_window_seconds))

    @classmethod
    def from_settings(cls, settings) -> "AnomalyPolicy":
        return cls(
            burst_limit=settings.anomaly_burst_limit,
            burst_window_seconds=settings.anomaly_burst_window_seconds,
            max_distinct_addresses=settings.anomaly_max_distinct_addresses,
            max_same_address_events=settings.anomaly_max_same_address_events,
            address_window_seconds=settings.anomaly_address_window_seconds,
            history_limit=settings.anomaly_history_limit,
        )


def evaluate_access(
    history: Sequence[DocumentAccessEvent],
    client_address: str,
    now: datetime,
    policy: AnomalyPolicy,
    expires_at: Optional[datetime] = None,
    revoked: bool = False,
) -> SuspicionVerdict:
    """Classify one access against the events that preceded it."""
    if revoked:
        return SuspicionVerdict(suspicious=True, reason="Access attempted after the share code was revoked.")
    if expires_at is not None and now >= expires_at:
        return SuspicionVerdict(
            suspicious=True,
            reason=f"Access after the share code expired at {expires_at.isoformat()}.",
        )

    burst_start = now - timedelta(seconds=policy.burst_window_seconds)
    address_start = now - timedelta(seconds=policy.address_window_seconds)

    burst_count = sum(1 for e in history if burst_start < e.occurred_at <= now)
    if burst_count >= policy.burst_limit:
        return SuspicionVerdict(
            suspicious=True,
            reason=(
                f"High access velocity: {burst_count + 1} accesses within "
                f"{policy.burst_window_seconds} seconds."
            ),
        )

    recent = [e for e in history if address_start < e.occurred_at <= now]
    addresses = {e.client_address for e in recent if e.client_address}
    addresses.add(client_address)
    if len(addresses) > policy.max_distinct_addresses:
        return SuspicionVerdict(
            suspicious=True,
            reason=(
                f"Multiple IP addresses ({len(addresses)}) accessed this share code "
                f"in the last {policy.address_window_seconds // 60} minutes."
            ),
        )

    same_address = sum(1 for e in recent if e.client_address == client_address)
    if same_address > policy.max_same_address_events:
        return SuspicionVerdict(
            suspicious=True,
            reason=f"Excessive access attempts ({same_address}) from the same IP address.",
        )

    return SuspicionVerdict()


class AnomalyDetector:
    def __init__(self, events: DocumentAccessStore, policy: Optional[AnomalyPolicy] = None):
        self.events = events
        self.policy = policy or AnomalyPolicy()

    def check_suspicious_activity(
        self,
        owner_user_id: str,
        share_code_id: str,
        client_address: str,
        now: datetime,
        expires_at: Optional[datetime] = None,
        revoked: bool = False,
    ) -> SuspicionVerdict:
        history = self.events.list_recent_events(
            owner_user_id,
            share_code_id,
            since=now - self.policy.lookback,
            limit=self.policy.history_limit,
        )
        verdict = evaluate_access(history, client_address, now, self.policy, expires_at, revoked)
        if verdict.suspicious:
            logger.warning(f"Suspicious share-code access: share_code={share_code_id} reason={verdict.reason}")
        return verdict
