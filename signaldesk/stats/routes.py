"""
Public Activity Stats
Landing-page counters; a store outage yields zeros rather than an error
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from config import settings
from signaldesk.database.connection import get_optional_database
from signaldesk.stats.cache import ResponseCache

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Stats"])

EMPTY_STATS = {"scans_total": 0, "scans_today": 0, "scans_hour": 0, "traders": 0}

stats_cache = ResponseCache(settings.STATS_CACHE_TTL_SECONDS)


async def collect_stats(db: AsyncIOMotorDatabase, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    hour_ago = now - timedelta(hours=1)

    return {
        "scans_total": await db.scans.count_documents({}),
        "scans_today": await db.scans.count_documents({"created_at": {"$gte": today}}),
        "scans_hour": await db.scans.count_documents({"created_at": {"$gte": hour_ago}}),
        "traders": await db.profiles.count_documents({})
    }


@router.get("/stats")
async def get_stats(db: Optional[AsyncIOMotorDatabase] = Depends(get_optional_database)):
    """Scan and trader counts, cached briefly"""
    cached = stats_cache.get()
    if cached is not None:
        return cached

    if db is None:
        return dict(EMPTY_STATS)

    try:
        stats = await collect_stats(db)
    except Exception as e:
        logger.warning(f"[STATS] Falling back to zeros: {str(e)}")
        return dict(EMPTY_STATS)

    stats_cache.put(stats)
    return stats
