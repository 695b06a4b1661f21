from typing import Optional

from ..services.queue import TaskQueue
from .config import settings

task_queue: Optional[TaskQueue] = None

async def get_task_queue() -> TaskQueue:
    """
    Get the process-wide TaskQueue used by the HTTP layer.
    """
    global task_queue
    if task_queue is None:
        task_queue = TaskQueue(queue_name=settings.QUEUE_NAME)
    return task_queue


async def close_task_queue() -> None:
    """
    Close the TaskQueue and its Redis connections.
    """
    global task_queue
    if task_queue is not None:
        await task_queue.close()
        task_queue = None
