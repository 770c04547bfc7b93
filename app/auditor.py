from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.exceptions import StoreError
from app.services.stats import audit_all_users


async def run_audit(store, metrics, logger) -> int:
    """Audit every user once; returns the number of drifted users."""
    try:
        audits = await audit_all_users(store)
    except StoreError as e:
        metrics.record_store_error()
        logger.error("event=audit_failed error=%s", str(e))
        return 0

    drifted = [a for a in audits if not a.consistent]
    for audit in drifted:
        logger.warning(
            "event=download_drift user_id=%s counter=%s ledger_entries=%s",
            audit.user_id,
            audit.counter,
            audit.ledger_entries,
        )
    metrics.record_audit(len(audits), len(drifted))
    logger.info("event=audit_complete audited=%s drifted=%s", len(audits), len(drifted))
    return len(drifted)


def start_auditor(store, metrics, logger, interval_minutes: int):
    # Must be started from a running event loop (application lifespan)
    scheduler = AsyncIOScheduler()
    scheduler.add_job(run_audit, "interval", minutes=interval_minutes, args=[store, metrics, logger])
    scheduler.start()
    return scheduler
