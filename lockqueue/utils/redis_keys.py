# utils/redis_keys.py
from typing import Union

TaskId = Union[int, str]


class QueueKeys:
    def __init__(self, queue_name: str, system_prefix: str = "rq"):
        self.queue_name = queue_name
        self.prefix = f"{system_prefix}:{queue_name}:"

    # Queue keys
    @property
    def id_key(self) -> str:
        return f"{self.prefix}id"

    @property
    def waiting_key(self) -> str:
        return f"{self.prefix}waiting"

    @property
    def working_key(self) -> str:
        return f"{self.prefix}working"

    @property
    def completed_key(self) -> str:
        # Reserved, nothing pushes to it yet
        return f"{self.prefix}completed"

    # Task-related keys
    def record_key(self, task_id: TaskId) -> str:
        return f"{self.prefix}{task_id}"

    def lock_key(self, task_id: TaskId) -> str:
        return f"{self.record_key(task_id)}:lock"
