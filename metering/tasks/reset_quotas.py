"""
Celery task that rolls quota usage over at the start of each reset period.

Beat runs it once per period; quotas whose last reset predates the current
day/week/month/year window are zeroed. Running it again in the same window
is a no-op.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from metering.config import settings
from metering.models.usage_quota import ResetPeriod
from metering.services.quota_service import QuotaService
from metering.utils.clock import utcnow
from metering.utils.logging import log_quotas_reset
from metering.utils.metrics import quotas_reset_total
from metering.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="reset_due_quotas", bind=True, max_retries=3, default_retry_delay=60)
def reset_due_quotas_task(self, reset_period: str, dry_run: bool = False):
    """
    Reset every quota in a reset cohort that is due.

    Args:
        reset_period: daily, weekly, monthly or yearly
        dry_run: Only count the quotas that would be reset

    Returns:
        Dict with reset_period, reset_count and dry_run
    """
    period = ResetPeriod(reset_period)

    try:
        reset_count = asyncio.run(_reset_due_quotas_async(period, dry_run))
    except Exception as e:
        logger.error(
            f"Quota reset for {period.value} failed: {e}",
            extra={"event": "scheduled_reset_failed", "reset_period": period.value},
            exc_info=True
        )
        raise self.retry(exc=e)

    return {"reset_period": period.value, "reset_count": reset_count, "dry_run": dry_run}


async def _reset_due_quotas_async(
    reset_period: ResetPeriod,
    dry_run: bool = False,
    session_factory: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None
) -> int:
    """
    Async implementation of the scheduled reset.

    Each run creates its own engine bound to the current event loop unless
    a session factory is supplied.
    """
    start_time = time.time()
    engine = None
    if session_factory is None:
        engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with session_factory() as db:
            reset_count = await QuotaService.reset_due(
                db, reset_period, now=now or utcnow(), dry_run=dry_run
            )
    finally:
        if engine is not None:
            await engine.dispose()

    if not dry_run:
        quotas_reset_total.labels(trigger=f"scheduled_{reset_period.value}").inc(reset_count)

    log_quotas_reset(
        logger,
        reset_count=reset_count,
        reset_period=reset_period.value,
        dry_run=dry_run,
        duration_ms=(time.time() - start_time) * 1000,
    )
    return reset_count
