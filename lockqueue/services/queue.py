import asyncio
import inspect
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..core.client import close_redis_client, create_redis_client
from ..core.config import settings
from ..errors import QueueError, StoreError
from ..events import Handler, QueueEvents
from ..models.enums import QueueEvent
from ..models.schemas import validate_task_data
from ..models.task import Task
from ..utils.redis_keys import QueueKeys, TaskId
from ..utils.redis_ops import execute_pipeline
from .lock import LockManager

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Task], Any]


class TaskQueue:
    """
    A named work queue backed by Redis.

    Producers call ``enqueue(data)``; consumers call ``dequeue(handler)`` (one
    claim) or ``listen(handler)`` (claim forever). Outcomes are reported on
    ``events``: ``error(err)``, ``complete(task)`` and ``fail(err, task)``.

    Two clients are used: ``redis_client`` for ordinary commands and
    ``blocking_client`` for BRPOPLPUSH, which holds its connection for as long
    as it waits.
    """

    def __init__(
        self,
        queue_name: str = settings.QUEUE_NAME,
        client: Optional[Redis] = None,
        blocking_client: Optional[Redis] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        retries: Optional[int] = None,
        lock_time_ms: Optional[int] = None,
    ):
        self.queue_name = queue_name
        self.host = host or settings.redis_host
        self.port = port or settings.redis_port
        self.retries = settings.redis_retries if retries is None else retries
        self.lock_time_ms = lock_time_ms or settings.LOCK_TIME_MS

        self.redis_client = client or create_redis_client(
            host=self.host, port=self.port, retries=self.retries
        )
        self.blocking_client = blocking_client or create_redis_client(
            host=self.host, port=self.port, retries=self.retries
        )

        # Private to this instance, never shared between queues
        self._lock_token = str(uuid.uuid4())
        self.keys = QueueKeys(queue_name)
        self.events = QueueEvents()
        self.locks = LockManager(
            client=self.redis_client,
            keys=self.keys,
            token=self._lock_token,
            lock_time_ms=self.lock_time_ms,
            events=self.events,
        )

        # Pause between failed claims in listen(), doubled up to max_backoff
        self.initial_backoff = 1.0
        self.max_backoff = 60.0

    def on(self, event, handler: Handler) -> Handler:
        return self.events.on(event, handler)

    async def enqueue(self, data: Dict[str, Any]) -> int:
        """
        Publish a new task and return its id.

        The id comes from INCR on the id counter; the waiting-list push and the
        record write go out in one MULTI/EXEC so a consumer never pops an id
        whose record is missing.
        """
        validate_task_data(data)
        try:
            task_id = await self.redis_client.incr(self.keys.id_key)

            def pipeline_operations(pipe):
                pipe.lpush(self.keys.waiting_key, task_id)
                # HSET rejects an empty mapping; an empty record reads back as {}
                if data:
                    pipe.hset(self.keys.record_key(task_id), mapping=data)

            await execute_pipeline(self.redis_client, pipeline_operations)
        except RedisError as e:
            error = StoreError(f"Failed to enqueue task on {self.queue_name}", e)
            logger.error(f"Error enqueueing task: {e}")
            await self.events.emit(QueueEvent.error, error)
            raise error from e

        logger.debug(f"Enqueued task {task_id} on {self.queue_name}")
        return int(task_id)

    async def dequeue(self, handler: TaskHandler) -> Optional[Task]:
        """
        Wait for the next task, lock it, load it and pass it to ``handler``.

        Blocks until a task is available. Failures while waiting, locking or
        loading are emitted as ``error`` and the handler is not called; in that
        case None is returned, otherwise the dispatched Task.

        ``task.done()`` is a coroutine: an async handler must await it, and a
        plain function handler must return it so it gets awaited here.
        Calling it as a bare statement from a plain function never releases
        the lock or reports the outcome.
        """
        if not callable(handler):
            raise TypeError("handler must be a function")

        task_id = None
        locked = False
        try:
            # Atomic move: the id is never off both lists at once
            raw_id = await self.blocking_client.brpoplpush(
                self.keys.waiting_key, self.keys.working_key, timeout=0
            )
            try:
                task_id = int(raw_id)
            except (TypeError, ValueError):
                raise QueueError(f"Malformed task id {raw_id!r} in {self.keys.waiting_key}")

            locked = await self.locks.acquire(task_id)

            data = await self.redis_client.hgetall(self.keys.record_key(task_id))
        except (RedisError, QueueError) as e:
            error = e
            if isinstance(e, RedisError):
                error = StoreError(f"Failed to dequeue from {self.queue_name}", e)
            logger.error(f"Error dequeuing task {task_id}: {e}")
            await self.events.emit(QueueEvent.error, error)
            if locked:
                await self._release_and_report(task_id)
            return None

        task = Task(self, task_id, data)
        logger.info(f"Claimed task {task.id} from {self.queue_name}")
        await self._dispatch(handler, task)
        return task

    async def listen(self, handler: TaskHandler) -> None:
        """
        Install ``handler`` as a standing consumer: claim tasks one at a time
        until the surrounding asyncio task is cancelled.

        After a failed claim the loop sleeps before trying again, starting at
        ``initial_backoff`` seconds and doubling up to ``max_backoff``; a
        successful claim resets the delay.
        """
        if not callable(handler):
            raise TypeError("handler must be a function")
        sleep_time = self.initial_backoff
        while True:
            task = await self.dequeue(handler)
            if task is not None:
                sleep_time = self.initial_backoff
                continue

            logger.info(f"Claim on {self.queue_name} failed. Retrying in {sleep_time}s")
            await asyncio.sleep(sleep_time)
            sleep_time = min(sleep_time * 2, self.max_backoff)

    async def get_task(self, task_id: TaskId) -> Optional[Task]:
        """Read a task record without claiming it."""
        try:
            data = await self.redis_client.hgetall(self.keys.record_key(task_id))
        except RedisError as e:
            raise StoreError(f"Failed to read task {task_id}", e) from e
        if not data:
            return None
        return Task(self, int(task_id), data)

    async def close(self) -> None:
        await self.locks.shutdown()
        await close_redis_client(self.blocking_client)
        await close_redis_client(self.redis_client)

    async def _dispatch(self, handler: TaskHandler, task: Task) -> None:
        try:
            result = handler(task)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"Handler raised while processing task {task.id}")
            if not task.completed:
                await task.complete(e)

    async def _release_and_report(self, task_id: int) -> bool:
        """Release a lock, reporting a failure on ``error`` instead of raising."""
        try:
            return await self.locks.release(task_id)
        except QueueError as e:
            logger.error(f"Error releasing lock for task {task_id}: {e}")
            await self.events.emit(QueueEvent.error, e)
            return False

    async def _finish(self, task: Task, error: Optional[BaseException]) -> bool:
        """Release the lock, then report the outcome. Called by Task.complete."""
        removed = await self._release_and_report(task.id)

        if error is None:
            logger.info(f"Task {task.id} completed")
            await self.events.emit(QueueEvent.complete, task)
        else:
            logger.warning(f"Task {task.id} failed: {error}")
            await self.events.emit(QueueEvent.fail, error, task)
        return removed
