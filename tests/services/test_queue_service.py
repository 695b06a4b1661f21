import asyncio
import pytest
from fakeredis import FakeServer, aioredis
from redis.exceptions import ConnectionError
from lockqueue.errors import (
    InvalidTaskDataError,
    LockNotAcquiredError,
    StoreError,
    TaskAlreadyCompletedError,
)
from lockqueue.models.enums import TaskStatus
from lockqueue.models.task import Task
from lockqueue.services.queue import TaskQueue


@pytest.fixture
def fake_server():
    return FakeServer()

@pytest.fixture
async def fake_redis(fake_server: FakeServer):
    client = aioredis.FakeRedis(server=fake_server, decode_responses=True)
    yield client
    await client.aclose()

def make_queue(server: FakeServer, name: str = "test", lock_time_ms: int = 1000) -> TaskQueue:
    return TaskQueue(
        queue_name=name,
        client=aioredis.FakeRedis(server=server, decode_responses=True),
        blocking_client=aioredis.FakeRedis(server=server, decode_responses=True),
        lock_time_ms=lock_time_ms,
    )

@pytest.fixture
async def queue_service(fake_server: FakeServer):
    queue = make_queue(fake_server)
    yield queue
    await queue.close()

@pytest.fixture
def recorded(queue_service: TaskQueue):
    events = {"error": [], "complete": [], "fail": []}
    queue_service.events.on_error(events["error"].append)
    queue_service.events.on_complete(events["complete"].append)
    queue_service.events.on_fail(lambda err, task: events["fail"].append((err, task)))
    return events


def test_initialize_to_defaults():
    queue = TaskQueue("test")

    assert queue.host == "127.0.0.1"
    assert queue.port == 6327
    assert queue.retries == 0
    assert queue.lock_time_ms == 30000
    assert queue.redis_client is not queue.blocking_client

def test_initialize_with_options():
    queue = TaskQueue("test", host="foo", port=1234, retries=3, lock_time_ms=500)

    assert queue.host == "foo"
    assert queue.port == 1234
    assert queue.retries == 3
    assert queue.locks.lock_time_ms == 500
    kwargs = queue.redis_client.connection_pool.connection_kwargs
    assert kwargs["host"] == "foo"
    assert kwargs["port"] == 1234

def test_lock_tokens_are_per_instance(fake_server: FakeServer):
    a = make_queue(fake_server)
    b = make_queue(fake_server)

    assert a.locks.token != b.locks.token

@pytest.mark.asyncio
async def test_enqueue_on_empty_queue(queue_service: TaskQueue, fake_redis: aioredis.FakeRedis):
    task_id = await queue_service.enqueue({"foo": "bar"})

    assert task_id == 1
    assert await fake_redis.lrange("rq:test:waiting", 0, -1) == ["1"]
    assert await fake_redis.hgetall("rq:test:1") == {"foo": "bar"}

@pytest.mark.asyncio
async def test_enqueue_ids_strictly_increase(queue_service: TaskQueue):
    ids = [await queue_service.enqueue({"n": i}) for i in range(10)]

    assert ids == sorted(set(ids))
    assert ids == list(range(1, 11))

@pytest.mark.asyncio
async def test_enqueue_empty_record(queue_service: TaskQueue, fake_redis: aioredis.FakeRedis):
    task_id = await queue_service.enqueue({})

    assert await fake_redis.lrange("rq:test:waiting", 0, -1) == [str(task_id)]
    assert await fake_redis.hgetall(f"rq:test:{task_id}") == {}

@pytest.mark.asyncio
@pytest.mark.parametrize("data", [{"nested": {"a": 1}}, {"flag": True}, {"": "x"}, ["foo"]])
async def test_enqueue_rejects_invalid_data(queue_service: TaskQueue, fake_redis: aioredis.FakeRedis, data):
    with pytest.raises(InvalidTaskDataError):
        await queue_service.enqueue(data)

    assert await fake_redis.get("rq:test:id") is None

@pytest.mark.asyncio
async def test_enqueue_store_failure_is_emitted_and_raised(queue_service: TaskQueue, recorded, monkeypatch):
    async def broken_incr(key):
        raise ConnectionError("connection refused")

    monkeypatch.setattr(queue_service.redis_client, "incr", broken_incr)

    with pytest.raises(StoreError) as exc_info:
        await queue_service.enqueue({"foo": "bar"})

    assert isinstance(exc_info.value.cause, ConnectionError)
    assert recorded["error"] == [exc_info.value]

@pytest.mark.asyncio
async def test_dequeue_claims_and_dispatches(queue_service: TaskQueue, fake_redis: aioredis.FakeRedis):
    await queue_service.enqueue({"foo": "bar"})
    received = []

    task = await queue_service.dequeue(received.append)

    assert received == [task]
    assert task.id == 1
    assert task.data == {"foo": "bar"}
    assert task.status == TaskStatus.claimed
    assert await fake_redis.lrange("rq:test:waiting", 0, -1) == []
    assert await fake_redis.lrange("rq:test:working", 0, -1) == ["1"]
    assert await fake_redis.get("rq:test:1:lock") == queue_service.locks.token
    assert queue_service.locks.is_renewing(1)

@pytest.mark.asyncio
async def test_dequeue_requires_callable(queue_service: TaskQueue):
    with pytest.raises(TypeError):
        await queue_service.dequeue("not a function")

@pytest.mark.asyncio
async def test_done_emits_complete_and_releases_lock(queue_service: TaskQueue, recorded, fake_redis: aioredis.FakeRedis):
    await queue_service.enqueue({"foo": "bar"})

    async def handler(task: Task):
        await task.done()

    task = await queue_service.dequeue(handler)

    assert [t.id for t in recorded["complete"]] == [task.id]
    assert recorded["fail"] == []
    assert task.status == TaskStatus.completed
    assert await fake_redis.exists("rq:test:1:lock") == 0
    assert not queue_service.locks.is_renewing(task.id)

@pytest.mark.asyncio
async def test_done_with_error_emits_fail(queue_service: TaskQueue, recorded):
    await queue_service.enqueue({"foo": "bar"})
    error = RuntimeError("foo")

    async def handler(task: Task):
        await task.done(error)

    task = await queue_service.dequeue(handler)

    assert recorded["fail"] == [(error, task)]
    assert recorded["complete"] == []
    assert task.status == TaskStatus.failed

@pytest.mark.asyncio
async def test_complete_is_reported_after_lock_release(queue_service: TaskQueue, fake_redis: aioredis.FakeRedis):
    await queue_service.enqueue({"foo": "bar"})
    lock_present = []

    async def on_complete(task: Task):
        lock_present.append(await fake_redis.exists(f"rq:test:{task.id}:lock"))

    queue_service.events.on_complete(on_complete)

    async def handler(task: Task):
        await task.complete()

    await queue_service.dequeue(handler)
    assert lock_present == [0]

@pytest.mark.asyncio
async def test_second_completion_raises(queue_service: TaskQueue, recorded):
    await queue_service.enqueue({"foo": "bar"})
    task = await queue_service.dequeue(lambda task: None)

    assert await task.done() is True
    with pytest.raises(TaskAlreadyCompletedError):
        await task.done(RuntimeError("late"))

    assert len(recorded["complete"]) == 1
    assert recorded["fail"] == []

@pytest.mark.asyncio
async def test_handler_exception_fails_task(queue_service: TaskQueue, recorded, fake_redis: aioredis.FakeRedis):
    await queue_service.enqueue({"foo": "bar"})
    error = ValueError("bad input")

    def handler(task: Task):
        raise error

    task = await queue_service.dequeue(handler)

    assert recorded["fail"] == [(error, task)]
    assert await fake_redis.exists("rq:test:1:lock") == 0

@pytest.mark.asyncio
async def test_dequeue_does_not_dispatch_when_lock_is_taken(queue_service: TaskQueue, recorded, fake_redis: aioredis.FakeRedis):
    await queue_service.enqueue({"foo": "bar"})
    await fake_redis.set("rq:test:1:lock", "someone-else", px=10000)
    received = []

    task = await queue_service.dequeue(received.append)

    assert task is None
    assert received == []
    assert len(recorded["error"]) == 1
    assert isinstance(recorded["error"][0], LockNotAcquiredError)
    assert recorded["error"][0].task_id == 1
    assert await fake_redis.get("rq:test:1:lock") == "someone-else"

@pytest.mark.asyncio
async def test_dequeue_store_failure_is_emitted(queue_service: TaskQueue, recorded, fake_redis: aioredis.FakeRedis, monkeypatch):
    await queue_service.enqueue({"foo": "bar"})

    async def broken_hgetall(key):
        raise ConnectionError("connection reset")

    monkeypatch.setattr(queue_service.redis_client, "hgetall", broken_hgetall)
    received = []

    task = await queue_service.dequeue(received.append)

    assert task is None
    assert received == []
    assert len(recorded["error"]) == 1
    assert isinstance(recorded["error"][0], StoreError)
    assert await fake_redis.exists("rq:test:1:lock") == 0
    assert not queue_service.locks.is_renewing(1)

@pytest.mark.asyncio
async def test_dequeue_blocks_until_enqueue(queue_service: TaskQueue):
    received = []
    waiter = asyncio.create_task(queue_service.dequeue(received.append))

    await asyncio.sleep(0.1)
    assert not waiter.done()

    await queue_service.enqueue({"foo": "bar"})
    task = await asyncio.wait_for(waiter, timeout=2)

    assert received == [task]
    assert task.data == {"foo": "bar"}

@pytest.mark.asyncio
async def test_listen_processes_tasks_in_order(queue_service: TaskQueue):
    for i in range(3):
        await queue_service.enqueue({"n": i})
    seen = []

    async def handler(task: Task):
        seen.append(task.id)
        await task.done()

    listener = asyncio.create_task(queue_service.listen(handler))
    for _ in range(50):
        if len(seen) == 3:
            break
        await asyncio.sleep(0.02)
    listener.cancel()
    with pytest.raises(asyncio.CancelledError):
        await listener

    assert seen == [1, 2, 3]

@pytest.mark.asyncio
async def test_get_task(queue_service: TaskQueue):
    task_id = await queue_service.enqueue({"foo": "bar"})

    task = await queue_service.get_task(task_id)

    assert task.id == task_id
    assert task.data == {"foo": "bar"}
    assert await queue_service.get_task(999) is None

@pytest.mark.asyncio
async def test_enqueue_publish_failure_leaves_nothing_behind(queue_service: TaskQueue, recorded, fake_redis: aioredis.FakeRedis, monkeypatch):
    async def broken_pipeline(redis_client, pipeline_function):
        raise ConnectionError("connection lost during EXEC")

    monkeypatch.setattr("lockqueue.services.queue.execute_pipeline", broken_pipeline)

    with pytest.raises(StoreError) as exc_info:
        await queue_service.enqueue({"foo": "bar"})

    assert recorded["error"] == [exc_info.value]
    assert await fake_redis.lrange("rq:test:waiting", 0, -1) == []
    assert await fake_redis.exists("rq:test:1") == 0

@pytest.mark.asyncio
async def test_dequeue_malformed_id_is_emitted(queue_service: TaskQueue, recorded, fake_redis: aioredis.FakeRedis):
    await fake_redis.lpush("rq:test:waiting", "not-a-number")
    received = []

    task = await queue_service.dequeue(received.append)

    assert task is None
    assert received == []
    assert len(recorded["error"]) == 1
    assert "Malformed task id" in str(recorded["error"][0])

@pytest.mark.asyncio
async def test_listen_backs_off_while_store_is_down(queue_service: TaskQueue, recorded, fake_server: FakeServer):
    queue_service.initial_backoff = 0.05
    queue_service.max_backoff = 0.2
    fake_server.connected = False

    listener = asyncio.create_task(queue_service.listen(lambda task: None))
    await asyncio.sleep(0.5)
    listener.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(listener, timeout=1)
    fake_server.connected = True

    assert 1 <= len(recorded["error"]) < 10
    assert all(isinstance(e, StoreError) for e in recorded["error"])

@pytest.mark.asyncio
async def test_listen_backoff_doubles_and_resets_after_a_claim(queue_service: TaskQueue, monkeypatch):
    queue_service.initial_backoff = 1.0
    queue_service.max_backoff = 3.0
    claimed = Task(queue_service, 1, {})
    outcomes = [None, None, None, claimed, None]
    delays = []

    async def scripted_dequeue(handler):
        if not outcomes:
            raise asyncio.CancelledError()
        return outcomes.pop(0)

    async def recording_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(queue_service, "dequeue", scripted_dequeue)
    monkeypatch.setattr("lockqueue.services.queue.asyncio.sleep", recording_sleep)

    with pytest.raises(asyncio.CancelledError):
        await queue_service.listen(lambda task: None)

    assert delays == [1.0, 2.0, 3.0, 1.0]

@pytest.mark.asyncio
async def test_plain_handler_returning_done_is_awaited(queue_service: TaskQueue, recorded, fake_redis: aioredis.FakeRedis):
    await queue_service.enqueue({"foo": "bar"})

    def handler(task: Task):
        return task.done()

    task = await queue_service.dequeue(handler)

    assert [t.id for t in recorded["complete"]] == [task.id]
    assert await fake_redis.exists("rq:test:1:lock") == 0
