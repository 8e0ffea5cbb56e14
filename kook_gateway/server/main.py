"""
MODULE OVERVIEW:
The mock gateway FastAPI application.

WHAT IS HAPPENING HERE:
We use a `lifespan` context manager. When Uvicorn starts the server, we spawn
the dummy event generators as `asyncio.create_task` background loops. When the
server shuts down, the lifespan cancels them and waits for them to exit.
"""

from fastapi import FastAPI
import asyncio
from contextlib import asynccontextmanager
from loguru import logger

from kook_gateway.server.connection_manager import manager
from kook_gateway.server.dummy_data import get_all_generators
from kook_gateway.server.routes import gateway

# We store our background tasks here so we can cancel them on shutdown.
background_tasks = set()


async def generator_runner(generator_func):
    """Consumes a dummy data generator and broadcasts its events to every client."""
    try:
        async for payload in generator_func:
            await manager.broadcast_event(payload)
    except asyncio.CancelledError:
        logger.debug(f"Generator cancelled: {generator_func.__name__}")
    except Exception as e:
        logger.error(f"Generator error: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # STARTUP
    logger.info("Mock gateway starting up...")

    for gen in get_all_generators():
        task = asyncio.create_task(generator_runner(gen))
        background_tasks.add(task)

    logger.info(f"Started {len(background_tasks)} background generators.")

    yield

    # SHUTDOWN
    logger.info("Mock gateway shutting down. Cancelling background tasks...")
    for task in background_tasks:
        task.cancel()

    if background_tasks:
        await asyncio.gather(*background_tasks, return_exceptions=True)
    background_tasks.clear()
    logger.info("Shutdown complete.")


app = FastAPI(
    title="KOOK Mock Gateway",
    description="A local stand-in for the KOOK gateway, for developing bots offline",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(gateway.router, tags=["Gateway"])


@app.get("/healthz", tags=["Ops"])
async def health_check():
    return {"status": "ok"}


@app.get("/stats", tags=["Ops"])
async def get_stats():
    return manager.get_stats()
