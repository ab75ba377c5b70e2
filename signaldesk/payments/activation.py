"""
Payment Activation & Reconciliation Sweep
Every path that completes a payment goes through activate_payment, and only
after the verifier has confirmed it.
"""
import calendar
import logging
from datetime import datetime, timedelta
from typing import Optional

from config import settings, get_plan, BILLING_PERIOD_MONTHS
from signaldesk.credits.ledger import CreditLedger, PLAN_GRANT, PURCHASE
from signaldesk.errors import ProviderError
from signaldesk.payments.verifier import COMPLETED, FAILED, PENDING
from signaldesk.utils.serializers import to_object_id

logger = logging.getLogger(__name__)


def add_months(start: datetime, months: int) -> datetime:
    """Same day-of-month `months` later, clamped to the end of shorter months"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


SUBSCRIPTION_FIELDS = ("plan_id", "subscription_status", "subscription_expires_at", "billing_period", "billing_cycle_start")


async def _grant_subscription(payment: dict, db, method: str) -> None:
    user_id = payment["user_id"]
    plan_id = payment.get("plan_id")
    plan = get_plan(plan_id)
    period = payment.get("period") or "monthly"
    months = int(payment.get("months") or BILLING_PERIOD_MONTHS.get(period, 1))
    now = datetime.utcnow()

    profile = await db.profiles.find_one(
        {"_id": to_object_id(user_id)},
        {field: 1 for field in SUBSCRIPTION_FIELDS}
    )
    if not profile:
        raise LookupError(f"profile {user_id} not found")
    previous = {field: profile.get(field) for field in SUBSCRIPTION_FIELDS}

    await db.profiles.update_one(
        {"_id": profile["_id"]},
        {"$set": {
            "plan_id": plan_id,
            "subscription_status": "active",
            "subscription_expires_at": add_months(now, months),
            "billing_period": period,
            "billing_cycle_start": now
        }}
    )

    if plan.get("topup_credits", 0) > 0:
        try:
            await CreditLedger.append(
                user_id,
                plan["topup_credits"],
                PLAN_GRANT,
                f"{plan['name']} plan bonus credits",
                db
            )
        except Exception:
            # Profile goes back to its prior state so a retry grants everything once
            await db.profiles.update_one({"_id": profile["_id"]}, {"$set": previous})
            raise

    logger.info(
        f"[ACTIVATE] Subscription activated: user={user_id}, plan={plan_id}, "
        f"period={period}, months={months}, method={method}"
    )


async def _grant_credits(payment: dict, db, method: str) -> None:
    credits = int(payment.get("credits_amount") or 0)
    if credits <= 0:
        return

    await CreditLedger.append(
        payment["user_id"],
        credits,
        PURCHASE,
        f"Purchased {credits} credits ({method})",
        db
    )
    logger.info(f"[ACTIVATE] Credits added: user={payment['user_id']}, credits={credits}, method={method}")


async def activate_payment(payment: dict, db, method: str) -> dict:
    """
    Mark a verified payment completed and grant what it bought

    Idempotent: only a pending payment transitions, so a second call for the
    same payment grants nothing.

    Returns:
        {"success": bool, "already_completed": bool}
    """
    now = datetime.utcnow()
    claimed = await db.payments.update_one(
        {"_id": payment["_id"], "status": PENDING},
        {"$set": {
            "status": COMPLETED,
            "completed_at": now,
            "activation_method": method,
            "verifier_status": COMPLETED
        }}
    )

    if claimed.modified_count == 0:
        current = await db.payments.find_one({"_id": payment["_id"]}, {"status": 1})
        already = bool(current and current.get("status") == COMPLETED)
        logger.info(f"[ACTIVATE] Payment {payment.get('reference')} not pending; skipped ({method})")
        return {"success": already, "already_completed": already}

    try:
        if payment.get("kind") == "subscription":
            await _grant_subscription(payment, db, method)
        else:
            await _grant_credits(payment, db, method)
    except Exception as e:
        # Put it back so the next sweep retries
        logger.error(f"[ACTIVATE] Grant failed for {payment.get('reference')}: {str(e)}")
        await db.payments.update_one(
            {"_id": payment["_id"]},
            {"$set": {"status": PENDING, "completed_at": None, "activation_method": None}}
        )
        return {"success": False, "already_completed": False}

    return {"success": True, "already_completed": False}


async def mark_failed(payment: dict, db) -> bool:
    result = await db.payments.update_one(
        {"_id": payment["_id"], "status": PENDING},
        {"$set": {"status": FAILED, "verifier_status": FAILED, "failed_at": datetime.utcnow()}}
    )
    if result.modified_count:
        logger.info(f"[SWEEP] Payment {payment.get('reference')} failed per verifier")
    return result.modified_count > 0


async def apply_verifier_status(payment: dict, verifier_status: str, db, method: str) -> str:
    """
    Act on the verifier's answer for one payment

    Returns:
        "activated", "already_done", "failed", "pending" or "error"
    """
    if verifier_status == COMPLETED:
        result = await activate_payment(payment, db, method)
        if result["already_completed"]:
            return "already_done"
        return "activated" if result["success"] else "error"

    if verifier_status == FAILED:
        await mark_failed(payment, db)
        return "failed"

    return "pending"


async def verify_payment(payment: dict, verifier, db, method: str) -> str:
    """Fetch the verifier status and apply it; verifier errors leave the payment pending"""
    try:
        verifier_status = await verifier.fetch_status(payment["reference"])
    except ProviderError as e:
        logger.warning(f"[SWEEP] Verifier error for {payment['reference']}: {e.message}")
        return "error"

    return await apply_verifier_status(payment, verifier_status, db, method)


async def sweep_pending_payments(
    db,
    verifier,
    min_age_seconds: Optional[int] = None,
    method: str = "sweep",
    now: Optional[datetime] = None
) -> dict:
    """
    Reconcile every pending payment with the verifier

    Payments younger than min_age_seconds are left for the webhook. Nothing
    is ever activated without the verifier saying so.
    """
    now = now or datetime.utcnow()
    min_age = settings.PAYMENT_MIN_AGE_SECONDS if min_age_seconds is None else min_age_seconds
    cutoff = now - timedelta(seconds=min_age)

    pending = await db.payments.find({"status": PENDING}).sort("created_at", -1).to_list(length=None)

    results = []
    activated = 0
    failed = 0

    for payment in pending:
        reference = payment.get("reference")

        created_at = payment.get("created_at")
        if created_at and created_at > cutoff:
            results.append({"reference": reference, "status": "too_recent"})
            continue

        try:
            outcome = await verify_payment(payment, verifier, db, method)
        except Exception as e:
            logger.error(f"[SWEEP] Reconciling {reference} failed: {str(e)}")
            outcome = "error"

        if outcome == "activated":
            activated += 1
        elif outcome == "failed":
            failed += 1
        results.append({"reference": reference, "status": outcome})

    logger.info(f"[SWEEP] Done: {len(pending)} checked, {activated} activated, {failed} failed")
    return {
        "checked": len(pending),
        "activated": activated,
        "failed": failed,
        "results": results
    }
