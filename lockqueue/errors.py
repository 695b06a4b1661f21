"""
Exception hierarchy for lockqueue.

QueueError
├── StoreError                : Redis command or connection failure (wraps original exception)
├── LockNotAcquiredError      : SET NX on a task lock was refused
├── LockRenewalError          : a scheduled lock renewal did not succeed
├── TaskAlreadyCompletedError : a task's completion was signalled twice
└── InvalidTaskDataError      : enqueue data is not a flat field/value mapping
"""


class QueueError(Exception):
    """Base class for all lockqueue exceptions."""


class StoreError(QueueError):
    """
    Wraps an underlying failure reported by the Redis client.

    Attributes
    ----------
    cause : Exception
        The original exception from redis-py.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class LockNotAcquiredError(QueueError):
    """Raised when a task lock is already held by some token."""

    def __init__(self, task_id) -> None:
        self.task_id = task_id
        super().__init__(f"Could not acquire lock for task {task_id}")


class LockRenewalError(QueueError):
    """Emitted when renewing a held lock fails; renewal stops afterwards."""

    def __init__(self, task_id, cause: Exception) -> None:
        self.task_id = task_id
        self.cause = cause
        super().__init__(f"Could not renew lock for task {task_id}: {cause}")


class TaskAlreadyCompletedError(QueueError):
    """Raised when ``Task.complete`` is called more than once."""

    def __init__(self, task_id) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} was already completed")


class InvalidTaskDataError(QueueError, ValueError):
    """Raised when task data cannot be stored as a Redis hash."""
