import logging
from contextlib import asynccontextmanager

import arq
from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Application lifespan handler.

    Performs:
    1. Conversation store initialization
    2. Redis pool creation and assembly of the Redis-backed services
    3. Draining background side effects and closing connections on shutdown
    """
    from neptune.services_init import background_queue, build_turn_services, conversation_store, settings

    logger.info("Lifespan: Initializing conversation store…")
    try:
        success = await conversation_store.initialize()
        if success:
            logger.info("Lifespan: Database initialization successful")
        else:
            logger.error("Lifespan: Database initialization failed")
    except Exception as exc:  # noqa: BLE001
        logger.error("Lifespan: CRITICAL - Failed to initialize Database: %s", exc, exc_info=True)
        raise
    app_instance.state.conversation_store = conversation_store

    logger.info("Lifespan: Attempting to initialize Redis connection pool…")
    try:
        redis_settings_obj = arq.connections.RedisSettings(host=settings.REDIS_HOST, port=settings.REDIS_PORT)
        logger.info("Lifespan: Redis settings for pool: host=%s, port=%s", settings.REDIS_HOST, settings.REDIS_PORT)
        redis_pool = await arq.create_pool(redis_settings_obj)
    except Exception as exc:  # noqa: BLE001
        logger.error("Lifespan: CRITICAL - Failed to initialize Redis connection pool: %s", exc, exc_info=True)
        raise RuntimeError(f"Lifespan: CRITICAL - Failed to initialize Redis connection pool: {exc}") from exc

    app_instance.state.redis_pool = redis_pool
    for name, service in build_turn_services(redis_pool).items():
        setattr(app_instance.state, name, service)
    logger.info("Lifespan: Startup complete.")

    yield

    logger.info("Lifespan: Shutdown initiated.")
    await background_queue.drain()
    await redis_pool.aclose()
    await conversation_store.close()
    logger.info("Lifespan: Shutdown complete.")
