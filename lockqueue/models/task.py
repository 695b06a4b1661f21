from typing import TYPE_CHECKING, Dict, Optional

from ..errors import TaskAlreadyCompletedError
from .enums import TaskStatus

if TYPE_CHECKING:
    from ..services.queue import TaskQueue


class Task:
    """
    A claimed unit of work.

    The consumer must call ``complete()`` (or ``done()``) exactly once: with
    no argument on success, or with the exception that made the work fail.
    """

    def __init__(self, queue: "TaskQueue", task_id: int, data: Optional[Dict[str, str]] = None):
        self.queue = queue
        self.id = int(task_id)
        self.data = dict(data or {})
        self.status = TaskStatus.claimed
        self.error: Optional[BaseException] = None

    @property
    def completed(self) -> bool:
        return self.status in (TaskStatus.completed, TaskStatus.failed)

    async def complete(self, error: Optional[BaseException] = None) -> bool:
        """
        Release the task's lock, then notify ``complete`` or ``fail``.

        Returns whether the lock key was removed. Raises
        TaskAlreadyCompletedError if the task was already completed.
        """
        if self.completed:
            raise TaskAlreadyCompletedError(self.id)
        self.status = TaskStatus.failed if error is not None else TaskStatus.completed
        self.error = error
        return await self.queue._finish(self, error)

    done = complete

    def __repr__(self) -> str:
        return f"Task(id={self.id}, queue={self.queue.queue_name!r}, status={self.status.value})"
