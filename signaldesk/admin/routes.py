"""
Admin API
Payment reconciliation, trials, credit allocation and operational listings
"""
import logging
from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timedelta
from typing import Literal, Optional

from signaldesk.database.connection import get_database
from signaldesk.admin.middleware import require_admin, log_admin_action
from signaldesk.credits.ledger import CreditLedger, ADMIN_GRANT
from signaldesk.errors import NotFound
from signaldesk.payments.activation import sweep_pending_payments
from signaldesk.payments.verifier import PaystackVerifier, get_payment_verifier
from signaldesk.utils.serializers import serialize_documents, to_object_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["Admin"])


class GiftTrialRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    days: int = Field(default=7, ge=1, le=365)


class CreditAllocationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    amount: int
    description: Optional[str] = "Admin allocation"


@router.post("/verify-payments")
async def verify_payments(
    admin_id: str = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_database),
    verifier: PaystackVerifier = Depends(get_payment_verifier)
):
    """Run the reconciliation sweep now"""
    result = await sweep_pending_payments(db, verifier, method="admin_sweep")

    await log_admin_action(
        admin_id,
        "verify_payments",
        {"checked": result["checked"], "activated": result["activated"], "failed": result["failed"]},
        db
    )

    return {
        "message": f"Checked {result['checked']}, activated {result['activated']}",
        **result
    }


@router.post("/gift-trial")
async def gift_trial(
    request: GiftTrialRequest,
    admin_id: str = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """Put a user on Pro for a number of days"""
    expires_at = datetime.utcnow() + timedelta(days=request.days)

    result = await db.profiles.update_one(
        {"_id": to_object_id(request.user_id)},
        {"$set": {
            "plan_id": "pro",
            "subscription_status": "active",
            "subscription_expires_at": expires_at
        }}
    )
    if result.matched_count == 0:
        raise NotFound("User not found")

    await CreditLedger.append(
        request.user_id,
        0,
        ADMIN_GRANT,
        f"Pro trial gifted for {request.days} days by admin",
        db,
        created_by=admin_id
    )

    await log_admin_action(admin_id, "gift_trial", {"user_id": request.user_id, "days": request.days}, db)
    logger.info(f"Admin {admin_id} gifted {request.days}-day Pro trial to {request.user_id}")

    return {"success": True, "expiresAt": expires_at.isoformat()}


@router.post("/credits")
async def allocate_credits(
    request: CreditAllocationRequest,
    admin_id: str = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """Grant (positive) or revoke (negative) top-up credits"""
    profile = await db.profiles.find_one({"_id": to_object_id(request.user_id)}, {"_id": 1})
    if not profile:
        raise NotFound("User not found")

    new_balance = await CreditLedger.allocate(
        admin_id,
        request.user_id,
        request.amount,
        request.description or "Admin allocation",
        db
    )

    await log_admin_action(
        admin_id,
        "allocate_credits",
        {"user_id": request.user_id, "amount": request.amount},
        db
    )

    return {"success": True, "newBalance": new_balance}


@router.get("/payments")
async def list_payments(
    admin_id: str = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_database),
    status: Optional[Literal["pending", "completed", "failed"]] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100)
):
    """Payments, newest first"""
    query = {"status": status} if status else {}

    payments = await db.payments.find(query)\
        .sort("created_at", -1)\
        .skip(skip)\
        .limit(limit)\
        .to_list(length=limit)

    total = await db.payments.count_documents(query)

    return {
        "payments": serialize_documents(payments),
        "pagination": {
            "total": total,
            "skip": skip,
            "limit": limit,
            "has_more": skip + limit < total
        }
    }


@router.get("/scans")
async def list_scans(
    admin_id: str = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_database),
    credit_source: Optional[Literal["plan", "topup", "unlimited", "batch"]] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(30, ge=1, le=100)
):
    """Recorded scans across all users, newest first"""
    query = {"credit_source": credit_source} if credit_source else {}

    scans = await db.scans.find(query)\
        .sort("created_at", -1)\
        .skip(skip)\
        .limit(limit)\
        .to_list(length=limit)

    total = await db.scans.count_documents(query)

    return {
        "scans": serialize_documents(scans),
        "pagination": {
            "total": total,
            "skip": skip,
            "limit": limit,
            "has_more": skip + limit < total
        }
    }
