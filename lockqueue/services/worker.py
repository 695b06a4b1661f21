import asyncio
import importlib
import logging
from typing import Optional

from ..core.config import settings
from ..models.task import Task
from .queue import TaskHandler, TaskQueue

logger = logging.getLogger(__name__)


async def log_and_complete(task: Task) -> None:
    """Fallback handler: log the task and mark it completed."""
    logger.info(f"Processing task {task.id}: {task.data}")
    await task.done()


def load_handler(path: Optional[str]) -> TaskHandler:
    """
    Resolve a ``"package.module:function"`` path to a task handler.
    """
    if not path:
        return log_and_complete

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Handler path must look like 'module:function', got {path!r}")

    handler = getattr(importlib.import_module(module_name), attr)
    if not callable(handler):
        raise TypeError(f"{path} is not callable")
    return handler


class Worker:
    def __init__(self, queue: TaskQueue, handler: TaskHandler):
        self.queue = queue
        self.handler = handler
        self.logger = logging.getLogger(__name__)
        self.processed = 0
        self.failed = 0

        self.queue.events.on_complete(self._count_completed)
        self.queue.events.on_fail(self._count_failed)
        self.queue.events.on_error(self._log_error)

    def _count_completed(self, task: Task) -> None:
        self.processed += 1

    def _count_failed(self, error: BaseException, task: Task) -> None:
        self.failed += 1

    def _log_error(self, error: BaseException) -> None:
        self.logger.error(f"Queue {self.queue.queue_name} reported: {error}")

    async def run(self):
        """
        Run the worker until cancelled, then close the queue's connections.
        """
        self.logger.info(f"Worker listening for tasks on {self.queue.keys.waiting_key}")
        try:
            await self.queue.listen(self.handler)
        except asyncio.CancelledError:
            self.logger.info("Worker received cancellation signal")
            raise
        finally:
            self.logger.info(
                f"Worker stopping: {self.processed} completed, {self.failed} failed"
            )
            await self.queue.close()


if __name__ == "__main__":
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    async def main():
        queue = TaskQueue(queue_name=settings.QUEUE_NAME)
        worker = Worker(queue, load_handler(settings.TASK_HANDLER))
        await worker.run()

    try:
        asyncio.run(main())  # Run the worker
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
