import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError
from src.api.router import api_router
from src.core.config import settings
from src.core.logger import configure_logging, get_logger
from src.infrastructure.clickhouse.client import ClickHouseStatsSource
from src.infrastructure.redis.client import create_redis
from src.startup import build_services

from shared.constants import Environment
from shared.utils.concurrency import run_blocking

# Configure logging once and get service logger
configure_logging()
logger = get_logger("stats.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("stats_service_starting")
    app.state.redis = create_redis()
    redis_available = await _check_redis(app.state.redis)
    app.state.source = ClickHouseStatsSource()
    app.state.services = build_services(
        app.state.redis, app.state.source, redis_available=redis_available
    )
    if not redis_available:
        app.state.services.health.start_reconnect()
    if Environment.runs_background_jobs(
        settings.app_environment, settings.enable_background_jobs
    ):
        app.state.services.scheduler.start()
    else:
        logger.info("refresh_scheduler_disabled")
    app.state.ready_event = asyncio.Event()
    app.state.ready_event.set()
    try:
        yield
    finally:
        logger.info("stats_service_stopping")
        await app.state.services.scheduler.stop()
        await app.state.services.health.close()
        await app.state.redis.aclose()
        await run_blocking(app.state.source.close)


app = FastAPI(title="Civilization Stats", version="0.1.0", lifespan=lifespan)
app.include_router(api_router)


async def _check_redis(r) -> bool:
    """One bounded PING; the service starts either way and reconnects later."""
    try:
        await asyncio.wait_for(r.ping(), settings.redis_connect_timeout_seconds)
    except (RedisError, OSError, asyncio.TimeoutError) as exc:
        logger.warning("redis_unavailable_at_startup", extra={"error": str(exc)})
        return False
    logger.info("redis_connected")
    return True


@app.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
