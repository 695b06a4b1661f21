from typing import Optional

from redis.asyncio import Redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError
from redis.retry import Retry

from .config import Settings, settings as default_settings


def create_redis_client(
    settings: Settings = default_settings,
    host: Optional[str] = None,
    port: Optional[int] = None,
    retries: Optional[int] = None,
) -> Redis:
    """
    Create a new Redis client instance.

    Every call returns a separate client, so a queue can keep one connection
    for ordinary commands and another for the blocking claim wait.
    """
    retries = settings.redis_retries if retries is None else retries
    options = {}
    if retries > 0:
        options["retry"] = Retry(ExponentialBackoff(), retries)
        options["retry_on_error"] = [ConnectionError, TimeoutError]

    return Redis(
        host=host or settings.redis_host,
        port=port or settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
        **options,
    )


async def close_redis_client(client: Optional[Redis]) -> None:
    """
    Close a Redis client connection.
    """
    if client is not None:
        await client.aclose()
