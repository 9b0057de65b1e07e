"""
Subscription gate.

Caches, per user, whether they are a member of the required channel.
Entries older than the TTL (15 minutes by default) are refreshed before
being trusted; a missing entry is always refreshed. Concurrent refreshes
for one user share a single membership query. A failed membership query
means "not subscribed" and never raises.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

SUBSCRIPTION_TTL_SECONDS = 15 * 60

# getChatMember statuses that count as subscribed
MEMBER_STATUSES = {"creator", "administrator", "member"}


@dataclass
class SubscriptionEntry:
    is_subscribed: bool
    checked_at: float


class SubscriptionGate:
    """
    Per-user membership cache in front of a membership lookup.

    Args:
        membership_lookup: async (user_id) -> chat member status string
        ttl: Seconds an entry stays fresh
        clock: Monotonic clock (injectable for tests)
    """

    def __init__(
        self,
        membership_lookup: Callable[[int], Awaitable[str]],
        ttl: float = SUBSCRIPTION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.membership_lookup = membership_lookup
        self.ttl = ttl
        self.clock = clock
        self._cache: dict[int, SubscriptionEntry] = {}
        self._inflight: dict[int, asyncio.Task] = {}

    def is_fresh(self, user_id: int) -> bool:
        entry = self._cache.get(user_id)
        if entry is None:
            return False
        return (self.clock() - entry.checked_at) < self.ttl

    async def is_allowed(self, user_id: int) -> bool:
        """Answer from cache when fresh, otherwise refresh first."""
        if self.is_fresh(user_id):
            return self._cache[user_id].is_subscribed
        return await self.refresh(user_id)

    async def refresh(self, user_id: int) -> bool:
        """Query membership now and overwrite the cache entry (joins a query already in flight)."""
        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.ensure_future(self._query(user_id))
            self._inflight[user_id] = task
            task.add_done_callback(lambda done: self._forget(user_id, done))
        return await asyncio.shield(task)

    def _forget(self, user_id: int, task: asyncio.Task) -> None:
        if self._inflight.get(user_id) is task:
            del self._inflight[user_id]

    async def _query(self, user_id: int) -> bool:
        try:
            status = await self.membership_lookup(user_id)
        except Exception as e:
            logger.warning(f"Membership check failed for user_id={user_id}: {e}")
            self._cache.pop(user_id, None)
            return False

        is_subscribed = status in MEMBER_STATUSES
        self._cache[user_id] = SubscriptionEntry(is_subscribed, self.clock())
        logger.info(f"Subscription refreshed for user_id={user_id}: status={status}, subscribed={is_subscribed}")
        return is_subscribed

    def invalidate(self, user_id: int) -> None:
        self._cache.pop(user_id, None)
