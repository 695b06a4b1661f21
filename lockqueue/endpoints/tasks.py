from fastapi import APIRouter, Depends, HTTPException
from ..errors import InvalidTaskDataError, StoreError
from ..models.schemas import TaskCreate, TaskModel
from ..services.queue import TaskQueue
from ..core.dependencies import get_task_queue

task_router = APIRouter(prefix="/tasks", tags=["Tasks"])


@task_router.post("", response_model=TaskModel)
async def create_task(task_create: TaskCreate, queue: TaskQueue = Depends(get_task_queue)):
    """
    Enqueue a new task.
    """
    try:
        task_id = await queue.enqueue(task_create.data)
    except InvalidTaskDataError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return TaskModel(
        task_id=task_id,
        data={key: str(value) for key, value in task_create.data.items()},
    )

@task_router.get("/{task_id}", response_model=TaskModel)
async def get_task(task_id: int, queue: TaskQueue = Depends(get_task_queue)):
    """
    Get the stored record of a task.
    """
    try:
        task = await queue.get_task(task_id)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return TaskModel(task_id=task.id, data=task.data)
