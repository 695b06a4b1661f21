import logging
from typing import List

from redis.asyncio import Redis

from ..core.config import settings
from ..models.schemas import QueueStats
from ..utils.redis_keys import QueueKeys


class MonitorService:
    """
    Read-only view of a queue's lists. Nothing here moves or requeues tasks.
    """

    def __init__(self, client: Redis, queue_name: str = settings.QUEUE_NAME):
        self.redis_client = client
        self.queue_name = queue_name
        self.keys = QueueKeys(queue_name)
        self.logger = logging.getLogger(__name__)

    async def get_queue_stats(self) -> QueueStats:
        pipe = self.redis_client.pipeline(transaction=False)
        pipe.get(self.keys.id_key)
        pipe.llen(self.keys.waiting_key)
        pipe.llen(self.keys.working_key)
        pipe.llen(self.keys.completed_key)
        last_id, waiting, working, completed = await pipe.execute()

        return QueueStats(
            queue_name=self.queue_name,
            last_id=int(last_id or 0),
            waiting=waiting,
            working=working,
            completed=completed,
        )

    async def find_unlocked_working(self) -> List[int]:
        """
        Ids sitting in the working list whose lock key has gone: finished
        tasks, or tasks whose consumer died and let the lock expire.
        """
        task_ids = await self.redis_client.lrange(self.keys.working_key, 0, -1)
        if not task_ids:
            return []

        pipe = self.redis_client.pipeline(transaction=False)
        for task_id in task_ids:
            pipe.exists(self.keys.lock_key(task_id))
        locked = await pipe.execute()

        orphans = sorted({int(task_id) for task_id, held in zip(task_ids, locked) if not held})
        if orphans:
            self.logger.info(f"{len(orphans)} unlocked task(s) in {self.keys.working_key}")
        return orphans
