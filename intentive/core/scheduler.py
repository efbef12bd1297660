"""Background job scheduler for backend session refresh."""
import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from intentive.auth.identity import IdentityClient
from intentive.core.config import settings
from intentive.core.errors import IdentityServiceError

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def refresh_session_job(identity: IdentityClient):
    """Refresh the backend session when it is close to expiry."""
    margin = timedelta(seconds=settings.session_refresh_margin_seconds)
    try:
        await identity.refresh_if_expiring(margin)
    except IdentityServiceError as e:
        logger.error(f"Session refresh failed: {e}")


def start_scheduler(identity: IdentityClient):
    """Start the background scheduler."""
    scheduler.add_job(
        refresh_session_job,
        trigger=IntervalTrigger(minutes=settings.session_refresh_interval_minutes),
        args=[identity],
        id="session_refresh",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started, checking session every {settings.session_refresh_interval_minutes} minutes"
    )


def shutdown_scheduler():
    """Graceful shutdown."""
    scheduler.shutdown(wait=False)
    logger.info("Scheduler shut down")
