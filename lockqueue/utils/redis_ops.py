from redis.asyncio import Redis
from typing import Any, Callable, List, Optional
import logging

logger = logging.getLogger(__name__)

# Deletes KEYS[1] only while it still holds ARGV[1]
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


async def execute_pipeline(
    redis_client: Redis,
    pipeline_function: Callable[[Any], Any],
) -> Optional[List[Any]]:
    """
    Queue the commands added by ``pipeline_function`` and run them as one
    MULTI/EXEC transaction. Returns the per-command replies.
    """
    pipe = redis_client.pipeline(transaction=True)
    try:
        pipeline_function(pipe)  # Define operations inside this function
        return await pipe.execute()
    except Exception as e:
        logger.error(f"Pipeline failed: {e}")
        raise
    finally:
        await pipe.reset()


async def compare_and_delete(redis_client: Redis, key: str, expected: str) -> bool:
    """
    Atomically delete ``key`` if its value equals ``expected``.
    """
    removed = await redis_client.eval(RELEASE_LOCK_SCRIPT, 1, key, expected)
    return int(removed or 0) == 1
