"""Periodic share-code maintenance: persist lapsed expiry and warn owners."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from custody.domain.interfaces import NotificationSender, ShareCodeStore
from custody.domain.models import ShareCodeStatus
from .notifications import share_code_expired_notice, share_code_expiring_notice

logger = logging.getLogger(__name__)

EXPIRY_WARNING_LOOKAHEAD = timedelta(days=1)


@dataclass
class SweepResult:
    processed: int = 0
    notified: int = 0
    errors: int = 0


class ShareCodeSweeper:
    def __init__(self, share_codes: ShareCodeStore, notifier: NotificationSender):
        self.share_codes = share_codes
        self.notifier = notifier

    async def _notify(self, owner_user_id: str, notification: dict) -> bool:
        try:
            await self.notifier.send(owner_user_id, notification)
            return True
        except Exception as e:
            logger.error(f"Failed to send share code notification to owner={owner_user_id}: {e}")
            return False

    async def expire_share_codes(self, now: datetime) -> SweepResult:
        result = SweepResult()
        for code in self.share_codes.list_by_status(ShareCodeStatus.ACTIVE):
            if code.expires_at > now:
                continue
            try:
                moved = self.share_codes.update_status(
                    code.share_code_id, ShareCodeStatus.EXPIRED, now, expected={ShareCodeStatus.ACTIVE}
                )
            except Exception as e:
                result.errors += 1
                logger.error(f"Failed to expire share code {code.share_code_id}: {e}")
                continue
            if not moved:
                logger.info(f"Share code {code.share_code_id} changed status during sweep, skipped")
                continue
            result.processed += 1
            if await self._notify(code.owner_user_id, share_code_expired_notice(code.owner_user_id, code.code_name)):
                result.notified += 1

        if result.processed or result.errors:
            logger.info(f"Share code expiry sweep: expired={result.processed} errors={result.errors}")
        return result

    async def notify_expiring_codes(
        self,
        now: datetime,
        lookahead: timedelta = EXPIRY_WARNING_LOOKAHEAD,
        interval: Optional[timedelta] = None,
    ) -> SweepResult:
        """Warn owners of active codes expiring within the lookahead.

        With an interval, only codes whose warning point fell inside the last
        interval are picked, so a sweep running every interval warns once.
        """
        horizon = now + lookahead
        floor = horizon - interval if interval else now
        result = SweepResult()
        expiring = [
            code for code in self.share_codes.list_by_status(ShareCodeStatus.ACTIVE)
            if now < code.expires_at <= horizon and code.expires_at > floor
        ]
        for code in expiring:
            result.processed += 1
            notice = share_code_expiring_notice(code.owner_user_id, code.code_name, code.expires_at)
            if await self._notify(code.owner_user_id, notice):
                result.notified += 1
        return result
