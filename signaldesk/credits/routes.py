"""
Credits Routes
Top-up balance and ledger history for the signed-in user
"""
import logging
from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from signaldesk.database.connection import get_database
from signaldesk.auth.jwt_handler import get_current_user_id
from signaldesk.credits.ledger import CreditLedger
from signaldesk.utils.serializers import serialize_documents

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/credits", tags=["Credits"])


@router.get("/balance")
async def get_credit_balance(
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """Current top-up balance"""
    balance = await CreditLedger.get_topup_balance(user_id, db)
    return {"balance": balance}


@router.get("/transactions")
async def get_credit_transactions(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """Ledger entries, newest first"""
    entries = await CreditLedger.history(user_id, db, limit=limit)
    return {
        "transactions": serialize_documents(entries),
        "count": len(entries)
    }
