"""
Payment Routes
Checkout initialization, client-prompted verification and the gateway webhook.
None of these activate anything on their own; the verifier decides.
"""
from fastapi import APIRouter, Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Literal, Optional
import hashlib
import hmac
import json
import logging

from config import settings, PLANS, CREDIT_PACKS, BILLING_PERIOD_MONTHS
from signaldesk.database.connection import get_database
from signaldesk.auth.jwt_handler import get_current_user_id
from signaldesk.errors import Forbidden, NotFound, ValidationError
from signaldesk.payments.activation import verify_payment
from signaldesk.payments.verifier import PaystackVerifier, get_payment_verifier
from signaldesk.utils.serializers import to_object_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/payments", tags=["Payments"])

CALLBACK_URL = f"{settings.FRONTEND_URL}/payment/callback"


class PaymentRequest(BaseModel):
    """Body of POST /api/payments/initialize"""
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["subscription", "credits"]
    plan_id: Optional[str] = Field(default=None, alias="planId")
    period: Literal["monthly", "yearly"] = "monthly"
    pack_id: Optional[str] = Field(default=None, alias="packId")


def price_payment(request: PaymentRequest) -> dict:
    """Payment fields for a plan or pack; unknown ids are a ValidationError"""
    if request.kind == "subscription":
        plan = PLANS.get(request.plan_id or "")
        if not plan or request.plan_id == "free":
            raise ValidationError("Invalid plan")
        months = BILLING_PERIOD_MONTHS[request.period]
        price = plan["yearly_price"] if request.period == "yearly" else plan["monthly_price"]
        return {
            "kind": "subscription",
            "plan_id": request.plan_id,
            "period": request.period,
            "months": months,
            "credits_amount": None,
            "amount_cents": price * 100
        }

    pack = CREDIT_PACKS.get(request.pack_id or "")
    if not pack:
        raise ValidationError("Invalid credit pack")
    return {
        "kind": "credits",
        "plan_id": None,
        "period": None,
        "months": None,
        "credits_amount": pack["credits"],
        "amount_cents": pack["price_cents"]
    }


@router.get("/plans")
async def get_plans():
    """Subscription tiers and credit packs"""
    plans = [
        {
            "id": plan_id,
            "name": plan["name"],
            "daily_scans": plan["daily_scans"],
            "monthly_scans": plan["monthly_scans"],
            "monthly_price": plan["monthly_price"],
            "yearly_price": plan["yearly_price"],
            "topup_credits": plan["topup_credits"],
            "features": plan["features"]
        }
        for plan_id, plan in PLANS.items()
        if plan_id != "free"
    ]
    packs = [
        {"id": pack_id, "credits": pack["credits"], "price_cents": pack["price_cents"]}
        for pack_id, pack in CREDIT_PACKS.items()
    ]
    return {
        "plans": plans,
        "credit_packs": packs,
        "currency": settings.PAYMENT_CURRENCY
    }


@router.post("/initialize")
async def initialize_payment(
    payment_request: PaymentRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database),
    verifier: PaystackVerifier = Depends(get_payment_verifier)
):
    """
    Start a checkout and record the pending payment

    Returns:
        Gateway authorization URL and reference
    """
    fields = price_payment(payment_request)

    profile = await db.profiles.find_one({"_id": to_object_id(user_id)}, {"email": 1})
    if not profile:
        raise NotFound("User not found")

    checkout = await verifier.initialize(
        email=profile.get("email"),
        amount_cents=fields["amount_cents"],
        currency=settings.PAYMENT_CURRENCY,
        callback_url=CALLBACK_URL,
        metadata={"user_id": user_id, **{k: v for k, v in fields.items() if v is not None}}
    )

    await db.payments.insert_one({
        "user_id": user_id,
        "reference": checkout["reference"],
        **fields,
        "status": "pending",
        "created_at": datetime.utcnow(),
        "completed_at": None,
        "activation_method": None,
        "verifier_status": None
    })

    logger.info(f"Payment initialized for user {user_id}: {fields['kind']} {checkout['reference']}")

    return {
        "status": "success",
        "reference": checkout["reference"],
        "authorization_url": checkout["authorization_url"],
        "access_code": checkout.get("access_code")
    }


@router.post("/verify/{reference}")
async def verify_payment_reference(
    reference: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database),
    verifier: PaystackVerifier = Depends(get_payment_verifier)
):
    """Client-prompted check after checkout; still decided by the verifier"""
    payment = await db.payments.find_one({"reference": reference})
    if not payment:
        raise NotFound("Payment not found")
    if payment["user_id"] != user_id:
        raise Forbidden("Payment belongs to another user")

    if payment["status"] != "pending":
        return {"reference": reference, "status": payment["status"]}

    outcome = await verify_payment(payment, verifier, db, "client_verify")
    current = await db.payments.find_one({"reference": reference}, {"status": 1})

    return {
        "reference": reference,
        "status": current["status"],
        "outcome": outcome
    }


def signature_valid(body: bytes, signature: Optional[str]) -> bool:
    secret = settings.PAYSTACK_WEBHOOK_SECRET or settings.PAYSTACK_SECRET_KEY
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


@router.post("/webhook")
async def paystack_webhook(
    request: Request,
    db: AsyncIOMotorDatabase = Depends(get_database),
    verifier: PaystackVerifier = Depends(get_payment_verifier)
):
    """
    Gateway notification

    A charge.success event only prompts verification of its reference;
    the webhook body itself is never trusted for activation.
    """
    body = await request.body()

    if not signature_valid(body, request.headers.get("x-paystack-signature")):
        logger.warning("Webhook received with missing or invalid signature")
        raise ValidationError("Invalid signature")

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        raise ValidationError("Malformed webhook body")

    if not isinstance(event, dict):
        raise ValidationError("Malformed webhook body")

    event_type = event.get("event")
    data = event.get("data")
    logger.info(f"Webhook event: {event_type}")

    if event_type != "charge.success":
        return {"received": True}

    reference = data.get("reference") if isinstance(data, dict) else None
    payment = await db.payments.find_one({"reference": reference, "status": "pending"}) if reference else None
    if not payment:
        logger.info(f"Webhook: no pending payment for {reference}")
        return {"received": True}

    outcome = await verify_payment(payment, verifier, db, "webhook")
    return {"received": True, "outcome": outcome}
