from enum import Enum

class QueueEvent(str, Enum):
    error = 'error'
    complete = 'complete'
    fail = 'fail'

class TaskStatus(str, Enum):
    waiting = 'waiting'
    claimed = 'claimed'
    completed = 'completed'
    failed = 'failed'
