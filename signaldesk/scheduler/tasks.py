"""
Background Scheduler
Payment reconciliation sweep and subscription expiry housekeeping
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime
import logging

from config import settings
from signaldesk.database.connection import get_database
from signaldesk.payments.activation import sweep_pending_payments
from signaldesk.payments.verifier import PaystackVerifier

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def start_scheduler():
    """Register jobs and start the scheduler"""

    scheduler.add_job(
        sweep_payments_job,
        IntervalTrigger(minutes=settings.PAYMENT_SWEEP_INTERVAL_MINUTES),
        id='payment_sweep',
        name='Reconcile pending payments with the verifier',
        replace_existing=True,
        max_instances=1
    )

    scheduler.add_job(
        expire_subscriptions_job,
        IntervalTrigger(hours=1),
        id='subscription_expiry',
        name='Flag lapsed subscriptions as expired',
        replace_existing=True,
        max_instances=1
    )

    scheduler.start()
    logger.info("[SCHEDULER] Started")


def shutdown_scheduler():
    """Stop the scheduler if it is running"""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("[SCHEDULER] Stopped")


async def sweep_payments_job():
    """Interval job: run the reconciliation sweep"""
    try:
        db = await get_database()
        result = await sweep_pending_payments(db, PaystackVerifier(), method="cron_sweep")
        logger.info(f"[SWEEP] Scheduled sweep: {result['checked']} checked, {result['activated']} activated")
    except Exception as e:
        logger.error(f"[SWEEP] Scheduled sweep failed: {str(e)}")


async def expire_subscriptions_job():
    """Interval job: active subscriptions past their expiry become expired"""
    try:
        db = await get_database()
        result = await db.profiles.update_many(
            {"subscription_status": "active", "subscription_expires_at": {"$lt": datetime.utcnow()}},
            {"$set": {"subscription_status": "expired"}}
        )
        if result.modified_count:
            logger.info(f"[SCHEDULER] Expired {result.modified_count} subscriptions")
    except Exception as e:
        logger.error(f"[SCHEDULER] Subscription expiry failed: {str(e)}")
