"""
Usage Manager
Combines plan limits, scans consumed this day/month and the top-up balance
into the snapshot every scan decision is made from
"""
import logging
from datetime import datetime
from typing import Optional

from config import PLANS, get_plan
from signaldesk.credits.ledger import CreditLedger
from signaldesk.errors import LedgerUnavailable, ServerError
from signaldesk.usage.models import UsageSnapshot
from signaldesk.utils.background import spawn_detached
from signaldesk.utils.serializers import to_object_id

logger = logging.getLogger(__name__)

UNLIMITED = -1


def resolve_plan(profile: dict, now: datetime) -> str:
    """Effective plan id: the subscribed plan while active and unexpired, else free"""
    plan_id = profile.get("plan_id") or "free"
    if plan_id not in PLANS:
        return "free"
    if plan_id == "free":
        return plan_id
    if profile.get("subscription_status") != "active":
        return "free"

    expires_at = profile.get("subscription_expires_at")
    if expires_at and expires_at < now:
        return "free"

    return plan_id


def is_lapsed(profile: dict, now: datetime) -> bool:
    """Subscription still flagged active although its expiry has passed"""
    expires_at = profile.get("subscription_expires_at")
    return (
        profile.get("subscription_status") == "active"
        and expires_at is not None
        and expires_at < now
    )


def check_scan_quota(plan: dict, daily_count: int, monthly_count: int) -> Optional[str]:
    """
    Plan allowance check

    Returns:
        None when the plan still allows a scan, otherwise the reason
    """
    daily_cap = plan["daily_scans"]
    monthly_cap = plan["monthly_scans"]

    if daily_cap != UNLIMITED and daily_count >= daily_cap:
        return f"Daily scan limit reached ({daily_count}/{daily_cap}). Upgrade for more."
    if monthly_cap != UNLIMITED and monthly_count >= monthly_cap:
        return f"Monthly scan limit reached ({monthly_count}/{monthly_cap}). Upgrade for more."
    return None


def remaining(cap: int, used: int) -> int:
    if cap == UNLIMITED:
        return UNLIMITED
    return max(0, cap - used)


def day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(now: datetime) -> datetime:
    return day_start(now).replace(day=1)


async def count_scan_units(user_id: str, since: datetime, db) -> int:
    """
    Plan allowance consumed since a point in time

    Top-up scans are paid from the ledger and do not count; a full market
    scan counts once however many pairs it recorded.
    """
    rows = await db.scans.find(
        {"user_id": user_id, "created_at": {"$gte": since}, "credit_source": {"$ne": "topup"}},
        {"credit_source": 1, "batch_id": 1, "batch_topup": 1}
    ).to_list(length=None)

    singles = sum(1 for row in rows if row.get("credit_source") != "batch")
    batches = {row.get("batch_id") for row in rows if row.get("credit_source") == "batch" and not row.get("batch_topup")}
    return singles + len(batches)


class UsageManager:
    """Usage snapshot and scan consumption"""

    @staticmethod
    async def get_usage(user_id: str, db, now: Optional[datetime] = None) -> UsageSnapshot:
        """Build the usage snapshot for a user"""
        now = now or datetime.utcnow()

        try:
            profile = await db.profiles.find_one({"_id": to_object_id(user_id)})
        except Exception as e:
            logger.error(f"[USAGE] Profile lookup failed for {user_id}: {str(e)}")
            raise ServerError() from e

        if not profile:
            return UsageSnapshot(scan_reason="No active plan")

        if is_lapsed(profile, now):
            await db.profiles.update_one(
                {"_id": profile["_id"]},
                {"$set": {"subscription_status": "expired"}}
            )
            profile["subscription_status"] = "expired"
            logger.info(f"[USAGE] Subscription expired for user {user_id}")

        plan_id = resolve_plan(profile, now)
        plan = get_plan(plan_id)

        try:
            daily_used = await count_scan_units(user_id, day_start(now), db)
            monthly_used = await count_scan_units(user_id, month_start(now), db)
        except Exception as e:
            logger.error(f"[USAGE] Scan count failed for {user_id}: {str(e)}")
            raise ServerError() from e

        try:
            topup = await CreditLedger.get_topup_balance(user_id, db)
        except LedgerUnavailable:
            topup = 0

        reason = check_scan_quota(plan, daily_used, monthly_used)
        via_topup = reason is not None and topup > 0

        return UsageSnapshot(
            plan_id=plan_id,
            tier_name=plan["name"],
            can_scan=reason is None or via_topup,
            scan_reason=None if via_topup else reason,
            can_scan_via_topup=via_topup,
            daily_used=daily_used,
            daily_limit=plan["daily_scans"],
            daily_remaining=remaining(plan["daily_scans"], daily_used),
            monthly_used=monthly_used,
            monthly_limit=plan["monthly_scans"],
            monthly_remaining=remaining(plan["monthly_scans"], monthly_used),
            topup_balance=topup
        )

    @staticmethod
    def credit_source(snapshot: UsageSnapshot) -> str:
        """Which allowance a scan made now would consume"""
        if snapshot.can_scan_via_topup:
            return "topup"
        if snapshot.daily_limit == UNLIMITED and snapshot.monthly_limit == UNLIMITED:
            return "unlimited"
        return "plan"

    @staticmethod
    async def record_scan(user_id: str, via_topup: bool, db) -> bool:
        """
        Consume one unit for a scan about to run

        Plan scans are tallied by the Scan rows themselves, so only a
        top-up scan writes anything here. The debit happens before the
        provider call; release_scan gives it back if nothing gets recorded.

        Returns:
            False when a top-up scan finds no credit to spend

        Raises:
            LedgerUnavailable: nothing was debited
        """
        consumed = True
        if via_topup:
            consumed = await CreditLedger.debit_one(user_id, "Signal scan (top-up credit)", db)

        if consumed:
            spawn_detached(UsageManager.touch_last_seen(user_id, db), "last-seen update")
        return consumed

    @staticmethod
    async def release_scan(user_id: str, via_topup: bool, db) -> None:
        """Undo record_scan for a scan that recorded nothing"""
        if not via_topup:
            return
        try:
            await CreditLedger.refund_one(user_id, "Refund: scan produced no result", db)
        except Exception as e:
            logger.error(f"[USAGE] Refund failed for {user_id}: {str(e)}")
            raise

    @staticmethod
    async def touch_last_seen(user_id: str, db) -> None:
        await db.profiles.update_one(
            {"_id": to_object_id(user_id)},
            {"$set": {"last_seen_at": datetime.utcnow()}}
        )
