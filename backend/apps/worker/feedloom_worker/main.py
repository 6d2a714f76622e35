"""
Feedloom worker - arq entry point.

Run with ``arq feedloom_worker.main.WorkerSettings``.
"""

from typing import Any

from arq.connections import RedisSettings

from feedloom_core import get_logger, init_logging
from feedloom_core.config import settings
from feedloom_core.services import IngestionService
from feedloom_database.session import close_database, init_database

from .tasks.feed_refresh import prune_user_feeds_task, refresh_user_feeds_task

logger = get_logger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    """Initialize logging, database and the shared ingestion service."""
    init_logging(settings.log_level, settings.log_json)
    session_factory = init_database(settings.database_url)
    ctx["ingestion_service"] = IngestionService(session_factory)
    logger.info("Feedloom worker started", extra={"version": settings.version})


async def shutdown(ctx: dict[str, Any]) -> None:
    """Release database connections."""
    await close_database()
    logger.info("Feedloom worker stopped")


class WorkerSettings:
    """arq worker configuration."""

    functions = [refresh_user_feeds_task, prune_user_feeds_task]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    max_jobs = 10
    job_timeout = int(settings.refresh_deadline_seconds) + 60
