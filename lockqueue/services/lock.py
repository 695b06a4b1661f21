"""
Token-authenticated, self-renewing task locks.

A lock on task ``T`` is the key ``rq:<queue>:T:lock`` holding the owning
queue's token with a server-side expiry. It is held only while that key
exists with that exact token.

acquire  SET key token PX lock_time [NX]; on success a renewal is armed to
         fire after lock_time / 2 and re-acquire with renew=True.
release  disarm the renewal, then delete the key via a Lua compare-and-delete
         so a lock that expired and was taken by someone else survives.
"""
import asyncio
import dataclasses
import logging
from typing import Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..errors import LockNotAcquiredError, LockRenewalError, StoreError
from ..events import QueueEvents
from ..models.enums import QueueEvent
from ..utils.redis_keys import QueueKeys, TaskId
from ..utils.redis_ops import compare_and_delete

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class _Renewal:
    """Pending renewal for one lock. ``armed`` is cleared synchronously by release."""

    task_id: str
    guard: asyncio.Lock = dataclasses.field(default_factory=asyncio.Lock)
    armed: bool = True
    task: Optional["asyncio.Task[None]"] = dataclasses.field(default=None, repr=False)


class LockManager:
    def __init__(
        self,
        client: Redis,
        keys: QueueKeys,
        token: str,
        lock_time_ms: int,
        events: QueueEvents,
    ):
        self.redis_client = client
        self.keys = keys
        self.token = token
        self.lock_time_ms = lock_time_ms
        self.events = events
        self._renewals: Dict[str, _Renewal] = {}

    @property
    def renew_interval(self) -> float:
        """Seconds between renewals: half the lock expiry."""
        return self.lock_time_ms / 2 / 1000

    def is_renewing(self, task_id: TaskId) -> bool:
        renewal = self._renewals.get(str(task_id))
        return renewal is not None and renewal.armed

    async def acquire(self, task_id: TaskId, renew: bool = False) -> bool:
        """
        Set the lock for ``task_id`` to this manager's token.

        With ``renew=False`` the SET only succeeds when the key is absent.
        With ``renew=True`` it overwrites, extending a lock we already hold.
        Raises LockNotAcquiredError when the store refuses the SET.
        """
        if not await self._set(task_id, renew):
            logger.warning(f"Lock for task {task_id} is held by another token")
            raise LockNotAcquiredError(task_id)

        self._arm(str(task_id))
        logger.debug(f"{'Renewed' if renew else 'Acquired'} lock for task {task_id}")
        return True

    async def _set(self, task_id: TaskId, renew: bool) -> bool:
        key = self.keys.lock_key(task_id)
        try:
            granted = await self.redis_client.set(
                key, self.token, px=self.lock_time_ms, nx=not renew
            )
        except RedisError as e:
            raise StoreError(f"Failed to set lock {key}", e) from e
        return bool(granted)

    async def release(self, task_id: TaskId) -> bool:
        """
        Release the lock for ``task_id`` if it still carries our token.

        The renewal is stopped whether or not the key is actually removed.
        Returns True only when the key was deleted.
        """
        renewal = self._renewals.pop(str(task_id), None)
        if renewal is not None:
            renewal.armed = False
            # Wait out a renewal SET that is already on the wire
            async with renewal.guard:
                if renewal.task is not None:
                    renewal.task.cancel()

        key = self.keys.lock_key(task_id)
        try:
            removed = await compare_and_delete(self.redis_client, key, self.token)
        except RedisError as e:
            raise StoreError(f"Failed to release lock {key}", e) from e

        if not removed:
            logger.info(f"Lock for task {task_id} was not ours to release")
        return removed

    async def shutdown(self) -> None:
        """Stop every pending renewal; held locks are left to expire."""
        renewals = list(self._renewals.values())
        self._renewals.clear()
        for renewal in renewals:
            renewal.armed = False
            if renewal.task is not None:
                renewal.task.cancel()
        for renewal in renewals:
            if renewal.task is not None:
                try:
                    await renewal.task
                except asyncio.CancelledError:
                    pass

    def _arm(self, task_id: str) -> None:
        previous = self._renewals.get(task_id)
        if previous is not None:
            previous.armed = False
            if previous.task is not None and previous.task is not asyncio.current_task():
                previous.task.cancel()

        renewal = _Renewal(task_id=task_id)
        renewal.task = asyncio.create_task(
            self._renew_later(renewal), name=f"lockqueue-renew-{task_id}"
        )
        self._renewals[task_id] = renewal

    async def _renew_later(self, renewal: _Renewal) -> None:
        await asyncio.sleep(self.renew_interval)
        async with renewal.guard:
            if not renewal.armed:
                return
            try:
                granted = await self._set(renewal.task_id, renew=True)
                if not granted:
                    raise LockNotAcquiredError(renewal.task_id)
            except (LockNotAcquiredError, StoreError) as e:
                renewal.armed = False
                if self._renewals.get(renewal.task_id) is renewal:
                    del self._renewals[renewal.task_id]
                logger.error(f"Lock renewal for task {renewal.task_id} failed: {e}")
                await self.events.emit(
                    QueueEvent.error, LockRenewalError(renewal.task_id, e)
                )
                return

            # release() may have disarmed us while the SET was in flight
            if renewal.armed:
                logger.debug(f"Renewed lock for task {renewal.task_id}")
                self._arm(renewal.task_id)
