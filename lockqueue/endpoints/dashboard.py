from fastapi import APIRouter, Depends, HTTPException
from redis.exceptions import RedisError
from ..models.schemas import OrphanReport, QueueStats
from ..services.monitor import MonitorService
from ..services.queue import TaskQueue
from ..core.dependencies import get_task_queue

dashboard_router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


def get_monitor(queue: TaskQueue = Depends(get_task_queue)) -> MonitorService:
    return MonitorService(client=queue.redis_client, queue_name=queue.queue_name)

@dashboard_router.get("/metrics/queue", response_model=QueueStats)
async def queue_metrics(monitor: MonitorService = Depends(get_monitor)):
    """
    Lengths of the waiting, working and completed lists.
    """
    try:
        return await monitor.get_queue_stats()
    except RedisError as e:
        raise HTTPException(status_code=500, detail=str(e))

@dashboard_router.get("/metrics/orphans", response_model=OrphanReport)
async def orphaned_tasks(monitor: MonitorService = Depends(get_monitor)):
    """
    Task ids in the working list that no longer hold a lock.
    """
    try:
        task_ids = await monitor.find_unlocked_working()
    except RedisError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return OrphanReport(queue_name=monitor.queue_name, task_ids=task_ids)
