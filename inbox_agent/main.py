"""
Inbox agent API: health checks and the daily agent admin routes.

The scheduler runs in the worker process (inbox_agent.jobs.worker); this app
only owns the database pool and Redis for request handling.
"""

import time
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, Request

from inbox_agent.config import settings
from inbox_agent.db.pool import db_pool
from inbox_agent.features.daily_agent.api.router import router as daily_agent_router
from inbox_agent.infrastructure.observability.logging import get_logger, log_request, setup_logging
from inbox_agent.routes import health
from inbox_agent.services.infrastructure.redis_client import fast_redis

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open Postgres then Redis; close them in reverse order, even after a failed start."""
    logger.info("API starting", environment=settings.environment, debug=settings.debug)

    async with AsyncExitStack() as stack:
        await db_pool.initialize(role="api")
        stack.push_async_callback(db_pool.close)

        await fast_redis.initialize()
        stack.push_async_callback(fast_redis.close)

        logger.info("API ready")
        yield
        logger.info("API shutting down")

    logger.info("API stopped")


app = FastAPI(
    title="Inbox Agent",
    description="Daily inbox triage agent: classification, FAQ replies, digest and auto-archive",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(daily_agent_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    log_request(
        request.method,
        request.url.path,
        response.status_code,
        round((time.perf_counter() - started) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
