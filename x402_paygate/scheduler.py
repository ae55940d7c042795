"""Background scheduler for nonce ledger garbage collection."""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = structlog.get_logger()

COLLECT_JOB_ID = "collect_nonces"


def collect_job(ledger) -> None:
    """Evict consumed and long-expired nonces from ``ledger``."""
    try:
        evicted = ledger.collect()
        if evicted:
            logger.info("nonce_collection_completed", evicted=evicted, remaining=len(ledger))
    except Exception as e:
        logger.error("nonce_collection_failed", error=str(e), exc_info=True)


def create_collector(ledger, interval_seconds: int) -> BackgroundScheduler:
    """Build a (not yet started) scheduler that runs collect_job on ``ledger``."""
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        collect_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[ledger],
        id=COLLECT_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    return scheduler
