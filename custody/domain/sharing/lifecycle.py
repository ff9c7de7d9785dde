"""Share code lifecycle: active -> expired -> revoked.

Expiry is computed lazily from expires_at, so a code is expired the moment
its deadline passes even if no sweep has persisted the status yet.
"""
from datetime import datetime
from typing import Dict, FrozenSet

from custody.domain.models import ShareCode, ShareCodeStatus
from custody.errors import InvalidTransitionError, ShareCodeInactiveError

ALLOWED_TRANSITIONS: Dict[ShareCodeStatus, FrozenSet[ShareCodeStatus]] = {
    ShareCodeStatus.ACTIVE: frozenset({ShareCodeStatus.EXPIRED, ShareCodeStatus.REVOKED}),
    ShareCodeStatus.EXPIRED: frozenset({ShareCodeStatus.REVOKED}),
    ShareCodeStatus.REVOKED: frozenset(),
}


def effective_state(code: ShareCode, now: datetime) -> ShareCodeStatus:
    if code.status == ShareCodeStatus.REVOKED:
        return ShareCodeStatus.REVOKED
    if code.status == ShareCodeStatus.EXPIRED or now >= code.expires_at:
        return ShareCodeStatus.EXPIRED
    return ShareCodeStatus.ACTIVE


def check_transition(code: ShareCode, target: ShareCodeStatus, now: datetime) -> None:
    current = effective_state(code, now)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


def ensure_redeemable(code: ShareCode, now: datetime) -> None:
    state = effective_state(code, now)
    if state != ShareCodeStatus.ACTIVE:
        raise ShareCodeInactiveError(state.value)
