from typing import Dict, List, Union
from pydantic import BaseModel, Field, field_validator

from ..errors import InvalidTaskDataError

FieldValue = Union[str, int, float]


def validate_task_data(data) -> Dict[str, FieldValue]:
    """
    Check that ``data`` is a flat mapping Redis can store as a hash.
    """
    if not isinstance(data, dict):
        raise InvalidTaskDataError("task data must be a mapping")
    for key, value in data.items():
        if not isinstance(key, str) or not key:
            raise InvalidTaskDataError(f"field names must be non-empty strings, got {key!r}")
        # bool is an int subclass but redis-py refuses it
        if isinstance(value, bool) or not isinstance(value, (str, int, float, bytes)):
            raise InvalidTaskDataError(f"field {key!r} has unsupported value {value!r}")
    return data


class TaskCreate(BaseModel):
    data: Dict[str, FieldValue] = Field(default_factory=dict)

    @field_validator('data')
    def validate_data(cls, v):
        try:
            return validate_task_data(v)
        except InvalidTaskDataError as e:
            raise ValueError(str(e))

class TaskModel(BaseModel):
    task_id: int = Field(ge=1)
    data: Dict[str, str] = Field(default_factory=dict)

class QueueStats(BaseModel):
    queue_name: str
    last_id: int = 0
    waiting: int = 0
    working: int = 0
    completed: int = 0

class OrphanReport(BaseModel):
    queue_name: str
    task_ids: List[int] = Field(default_factory=list)
