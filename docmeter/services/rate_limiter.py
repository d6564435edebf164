"""
Per-account request rate limiting and usage quota checks.

Both guards fail open: if the store is unavailable the request is allowed
and the failure is logged. Billing, not admission, is the hard boundary.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from docmeter.errors import QuotaExceededError, RateLimitExceededError, StoreUnavailableError
from docmeter.repositories.idempotency_store import ACCOUNTS, RATE_LIMIT_WINDOWS, IdempotencyStore
from docmeter.utils.ids import utcnow
from docmeter.utils.metrics import rate_limit_rejections_total

logger = logging.getLogger(__name__)

# Counter rows outlive their minute so late readers still see them
WINDOW_RETENTION = timedelta(hours=1)


def window_key(owner_id: str, now: datetime) -> str:
    return f"{owner_id}#{now.strftime('%Y-%m-%d-%H-%M')}"


class RateLimiter:
    """Fixed one-minute windows keyed by wall-clock minute."""

    def __init__(self, store: IdempotencyStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def check_rate(self, owner_id: str, limit_per_minute: Optional[int]) -> int:
        """
        Count this request and reject it if the window was already full.

        Args:
            owner_id: Account making the request
            limit_per_minute: Allowed requests per minute, None for unlimited

        Returns:
            Number of requests seen in this window before this one

        Raises:
            RateLimitExceededError: If the pre-increment count reached the limit
        """
        if limit_per_minute is None:
            return 0

        now = self.clock()
        key = window_key(owner_id, now)
        # TODO: purge rate_limit_windows rows past expires_at from a periodic task
        try:
            created = await self.store.put(
                RATE_LIMIT_WINDOWS,
                {
                    "window_key": key,
                    "owner_id": owner_id,
                    "request_count": 1,
                    "expires_at": now.replace(second=0, microsecond=0) + timedelta(minutes=1) + WINDOW_RETENTION,
                },
                if_absent=True,
            )
            if created:
                previous = 0
            else:
                updated = await self.store.conditional_update(
                    RATE_LIMIT_WINDOWS, key, increments={"request_count": 1}
                )
                previous = updated["request_count"] - 1 if updated else 0
        except StoreUnavailableError as e:
            logger.warning(f"Rate limit check failed for {owner_id}, allowing request: {e}")
            return 0

        if previous >= limit_per_minute:
            rate_limit_rejections_total.inc()
            raise RateLimitExceededError(limit=limit_per_minute, retry_after=60 - now.second)
        return previous


class QuotaGuard:
    """Rejects requests from accounts that used up their plan quota."""

    def __init__(self, store: IdempotencyStore):
        self.store = store

    async def check_quota(self, owner_id: str, usage: int, quota: Optional[int]):
        """
        Args:
            owner_id: Account making the request
            usage: Jobs billed so far
            quota: Plan quota, None for unlimited

        Raises:
            QuotaExceededError: If usage >= quota
        """
        if quota is None:
            return

        exceeded = usage >= quota
        try:
            # Flip the flag only when it changes
            await self.store.compare_and_swap(
                ACCOUNTS,
                owner_id,
                expected={"quota_exceeded": not exceeded},
                new={"quota_exceeded": exceeded},
            )
        except StoreUnavailableError as e:
            logger.warning(f"Could not update quota flag for {owner_id}: {e}")

        if exceeded:
            raise QuotaExceededError(current_usage=usage, quota=quota)
