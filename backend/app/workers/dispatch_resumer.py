import asyncio
import logging

from app.services.distribution_service import DistributionService

logger = logging.getLogger(__name__)


async def resume_pending_dispatches(service: DistributionService) -> None:
    """Re-dispatch plans left pending by a crash, a cancellation or a busy lease."""
    resumed = await service.resume_pending()
    if resumed:
        logger.info(f"Resumed {len(resumed)} pending plans: {[str(p) for p in resumed]}")


async def resume_loop(service: DistributionService, interval_seconds: int) -> None:
    while True:
        try:
            await resume_pending_dispatches(service)
        except Exception:
            logger.exception("Pending plan resume failed")  # don't crash the loop
        await asyncio.sleep(interval_seconds)
