"""
Usage Routes
"""
from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from signaldesk.database.connection import get_database
from signaldesk.auth.jwt_handler import get_current_user_id
from signaldesk.usage.manager import UsageManager

router = APIRouter(prefix="/api", tags=["Usage"])


@router.get("/usage")
async def get_usage(
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """Plan allowance, consumption and top-up balance for the caller"""
    usage = await UsageManager.get_usage(user_id, db)
    return usage.to_response()
