"""
Scan Routes
Metered single-pair scans, the full market scan, history and public share links
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from config import FULL_SCAN_MIN_TIER, PLANS, SCAN_PAIRS, SCAN_TIMEFRAMES, tier_at_least
from signaldesk.database.connection import get_database
from signaldesk.auth.jwt_handler import get_current_user_id, get_optional_user_id
from signaldesk.errors import Forbidden, QuotaExceeded, ValidationError
from signaldesk.scan.models import FullScanRequest, ScanRequest
from signaldesk.scan.provider import get_analysis_provider
from signaldesk.scan.services import TIMEFRAME_TTL, ScanOrchestrator, get_shared_scan
from signaldesk.usage.manager import UsageManager
from signaldesk.utils.serializers import serialize_documents

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/scan", tags=["Scan"])


def get_scan_orchestrator(provider=Depends(get_analysis_provider)) -> ScanOrchestrator:
    return ScanOrchestrator(provider)


def resolve_pairs(symbols):
    if not symbols:
        return None
    by_symbol = {pair["symbol"]: pair for pair in SCAN_PAIRS}
    unknown = [symbol for symbol in symbols if symbol not in by_symbol]
    if unknown:
        raise ValidationError(f"Unknown pairs: {', '.join(unknown)}")
    return [by_symbol[symbol] for symbol in symbols]


def resolve_timeframes(timeframes):
    if not timeframes:
        return None
    unknown = [tf for tf in timeframes if tf not in SCAN_TIMEFRAMES]
    if unknown:
        raise ValidationError(f"Unsupported timeframes: {', '.join(unknown)}")
    return list(timeframes)


@router.post("")
async def scan_pair(
    request: ScanRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator)
):
    """
    Analyze one pair on one timeframe

    Consumes one plan scan or one top-up credit, only when the analysis succeeds.
    """
    if request.timeframe not in TIMEFRAME_TTL:
        raise ValidationError(f"Unsupported timeframe: {request.timeframe}")

    usage = await UsageManager.get_usage(user_id, db)
    if not usage.can_scan:
        logger.info(f"[SCAN] Quota refused for user {user_id}: {usage.scan_reason}")
        raise QuotaExceeded(usage.scan_reason, usage=usage.to_response())

    credit_source = UsageManager.credit_source(usage)
    via_topup = credit_source == "topup"

    if not await UsageManager.record_scan(user_id, via_topup, db):
        raise QuotaExceeded(usage=usage.to_response())

    try:
        signal = await orchestrator.scan_single_pair(
            request.symbol,
            request.display_symbol,
            request.timeframe,
            user_id,
            credit_source,
            db
        )
    except Exception:
        await UsageManager.release_scan(user_id, via_topup, db)
        raise

    updated = await UsageManager.get_usage(user_id, db)

    return {
        "signal": signal.to_response(),
        "usage": updated.to_response()
    }


@router.post("/full")
async def full_market_scan(
    request: FullScanRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator)
):
    """
    Scan the tracked universe (or a subset) in one request

    Pro tier and above. The whole batch consumes a single unit.
    """
    usage = await UsageManager.get_usage(user_id, db)

    if not tier_at_least(usage.plan_id, FULL_SCAN_MIN_TIER):
        raise Forbidden(f"Full market scan requires the {PLANS[FULL_SCAN_MIN_TIER]['name']} plan or higher")
    if not usage.can_scan:
        raise QuotaExceeded(usage.scan_reason, usage=usage.to_response())

    pairs = resolve_pairs(request.pairs)
    timeframes = resolve_timeframes(request.timeframes)
    via_topup = usage.can_scan_via_topup

    if not await UsageManager.record_scan(user_id, via_topup, db):
        raise QuotaExceeded(usage=usage.to_response())

    try:
        result = await orchestrator.run_signal_scan(pairs, timeframes, user_id, db, via_topup=via_topup)
    except Exception:
        await UsageManager.release_scan(user_id, via_topup, db)
        raise

    if not result["recorded"]:
        await UsageManager.release_scan(user_id, via_topup, db)

    updated = await UsageManager.get_usage(user_id, db)

    return {
        "signalsGenerated": result["signalsGenerated"],
        "scannedPairs": result["scannedPairs"],
        "signals": [signal.to_response() for signal in result["signals"]],
        "errors": result["errors"],
        "scanDuration": result["scanDuration"],
        "usage": updated.to_response()
    }


@router.get("/history")
async def scan_history(
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """Caller's recorded scans, newest first"""
    scans = await db.scans.find(
        {"user_id": user_id}
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)

    total = await db.scans.count_documents({"user_id": user_id})

    return {
        "scans": serialize_documents(scans),
        "total": total,
        "limit": limit,
        "skip": skip
    }


@router.get("/share/{share_id}")
async def shared_scan(
    share_id: str,
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """Public scan view; trade levels only for the owner or paid viewers"""
    return await get_shared_scan(share_id, viewer_id, db)
