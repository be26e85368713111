"""
Background job definitions using APScheduler.

Jobs include:
- Exchange rate refresh for every base currency in use
- Purge of expired rate cache rows
"""

import logging
from typing import List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.db import get_db_context
from src.models import User
from src.services.currency import CurrencyNormalizer, get_currency_normalizer

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def bases_in_use(db: AsyncSession) -> List[str]:
    """Configured pre-warm currencies plus every user's preferred currency."""
    result = await db.execute(
        select(User.preferred_currency)
        .where(User.preferred_currency.is_not(None), User.is_active.is_(True))
        .distinct()
    )
    bases = {code.upper() for code in settings.prewarm_currencies}
    bases.update(code.upper() for code in result.scalars().all() if code)
    return sorted(bases)


async def refresh_rates(normalizer: CurrencyNormalizer, bases: List[str]) -> int:
    """Refresh each base; one failing base does not stop the rest."""
    refreshed = 0
    for base in bases:
        try:
            rate_set = await normalizer.refresh(base)
        except Exception as e:
            logger.error(f"Rate refresh for {base} failed: {e}")
            continue
        if not rate_set.is_fallback:
            refreshed += 1
    return refreshed


async def rate_refresh_job():
    """Pre-warm the rate cache and drop expired rows."""
    logger.debug("Running rate refresh job")
    normalizer = get_currency_normalizer()
    try:
        async with get_db_context() as db:
            bases = await bases_in_use(db)

        refreshed = await refresh_rates(normalizer, bases)
        purged = await normalizer.purge_expired()
        logger.info(
            f"Rate refresh job: {refreshed}/{len(bases)} live tables, "
            f"{purged} expired cache entries purged"
        )
    except Exception as e:
        logger.error(f"Rate refresh job error: {e}")


def setup_scheduler():
    """
    Configure and add all scheduled jobs.

    Called during application startup.
    """
    scheduler.add_job(
        rate_refresh_job,
        trigger=IntervalTrigger(hours=settings.rate_refresh_interval_hours),
        id="rate_refresh",
        name="Refresh exchange rates",
        replace_existing=True,
    )

    logger.info("Scheduler configured with jobs")
