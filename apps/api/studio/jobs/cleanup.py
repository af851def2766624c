"""Background cleanup jobs."""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..core.config import settings
from ..storage import ImageStore


logger = logging.getLogger(__name__)


# Global scheduler instance
scheduler = AsyncIOScheduler()

_image_store: Optional[ImageStore] = None


def register_image_store(store: ImageStore) -> None:
    """Set the store swept by ``sweep_expired_images``."""
    global _image_store
    _image_store = store


@scheduler.scheduled_job('interval', seconds=settings.IMAGE_SWEEP_INTERVAL_SECONDS, id='sweep_expired_images')
async def sweep_expired_images() -> int:
    """
    Delete stored images older than the TTL.

    Runs every IMAGE_SWEEP_INTERVAL_SECONDS.
    """
    if _image_store is None:
        return 0
    try:
        count = await _image_store.sweep()
        if count > 0:
            logger.info(f"Swept {count} expired images")
        else:
            logger.debug("No expired images to sweep")
        return count
    except Exception as e:
        logger.error(f"Error in sweep_expired_images job: {e}", exc_info=True)
        return 0


def start_background_jobs():
    """Start all background jobs."""
    if scheduler.running:
        return
    logger.info("Starting background jobs scheduler...")
    scheduler.start()
    logger.info(f"Background jobs started: {[job.id for job in scheduler.get_jobs()]}")


def stop_background_jobs():
    """Stop all background jobs."""
    if not scheduler.running:
        return
    logger.info("Stopping background jobs scheduler...")
    scheduler.shutdown(wait=False)
    logger.info("Background jobs stopped")


def get_job_status():
    """Get status of all background jobs."""
    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger)
        })
    return {"running": scheduler.running, "jobs": jobs}
