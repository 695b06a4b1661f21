from contextlib import asynccontextmanager

from fastapi import FastAPI
from .endpoints.dashboard import dashboard_router
from .endpoints.tasks import task_router
from .core.dependencies import close_task_queue


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_task_queue()


app = FastAPI(
    title="lockqueue",
    description="Producer and metrics API for a Redis-backed task queue",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(task_router)
app.include_router(dashboard_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
