"""
Scan Orchestration
Single-pair scans and the full market scan built on the analysis provider
"""
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from config import settings, SCAN_PAIRS, SCAN_TIMEFRAMES
from signaldesk.errors import NotFound, ProviderError, ServerError
from signaldesk.scan.models import AnalysisResult, Signal, TRADE_LEVEL_FIELDS
from signaldesk.utils.serializers import serialize_value, to_object_id

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("trend", "bias", "confidence")

NUMERIC_FIELDS = ("support", "resistance", "entry_price", "stop_loss", "take_profit")

# How long a signal stays actionable
TIMEFRAME_TTL = {
    "15m": timedelta(minutes=15),
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
}

DIRECTIONS = {"bullish": "BUY", "bearish": "SELL"}


def _number(value) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _list(value) -> list:
    return value if isinstance(value, list) else []


def _text(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def normalize_analysis(raw: dict, pair: str, timeframe: str) -> AnalysisResult:
    """
    Canonical AnalysisResult from a provider reply

    Raises:
        ProviderError: a required field is missing or unusable
    """
    missing = [field for field in REQUIRED_FIELDS if raw.get(field) in (None, "")]
    if missing:
        raise ProviderError(f"Analysis missing required fields: {', '.join(missing)}")

    data = {
        "pair": pair,
        "timeframe": timeframe,
        "trend": raw.get("trend"),
        "bias": raw.get("bias"),
        "confidence": raw.get("confidence"),
        "grade": _text(raw.get("grade")),
        "structure": _text(raw.get("structure")),
        "risk_reward": _text(raw.get("risk_reward")),
        "confluences": [str(c) for c in _list(raw.get("confluences"))],
        "key_levels": [k for k in _list(raw.get("key_levels")) if isinstance(k, dict)],
        "annotations": [a for a in _list(raw.get("annotations")) if isinstance(a, dict)],
        "notes": _text(raw.get("notes") or raw.get("reasoning")),
    }
    for field in NUMERIC_FIELDS:
        data[field] = _number(raw.get(field))
    if data["take_profit"] is None:
        data["take_profit"] = _number(raw.get("take_profit_1"))

    try:
        return AnalysisResult(**data)
    except PydanticValidationError as e:
        raise ProviderError("Analysis provider returned an unusable result") from e


def signal_direction(analysis: AnalysisResult) -> str:
    return DIRECTIONS.get(analysis.bias.lower(), "NEUTRAL")


def is_tradeable(analysis: AnalysisResult) -> bool:
    """Neutral and grade D results are recorded but never surfaced as signals"""
    return signal_direction(analysis) != "NEUTRAL" and (analysis.grade or "").upper() != "D"


def build_signal(scan: dict, analysis: AnalysisResult) -> Signal:
    created_at = scan["created_at"]
    ttl = TIMEFRAME_TTL.get(analysis.timeframe, TIMEFRAME_TTL["1h"])
    return Signal(
        id=str(scan["_id"]),
        symbol=scan["pair"],
        display_symbol=scan["display_pair"],
        timeframe=scan["timeframe"],
        direction=signal_direction(analysis),
        confidence=analysis.confidence,
        analysis=analysis,
        share_id=scan["share_id"],
        created_at=created_at.isoformat(),
        expires_at=(created_at + ttl).isoformat()
    )


class ScanOrchestrator:
    """Drives the analysis provider and records every usable result"""

    def __init__(
        self,
        provider,
        batch_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.provider = provider
        self.batch_timeout = batch_timeout or settings.BATCH_SCAN_TIMEOUT_SECONDS
        self.clock = clock

    async def _record(
        self,
        symbol: str,
        display: str,
        timeframe: str,
        user_id: str,
        credit_source: str,
        analysis: AnalysisResult,
        db,
        extra: Optional[dict] = None
    ) -> dict:
        scan = {
            "user_id": user_id,
            "pair": symbol,
            "display_pair": display,
            "timeframe": timeframe,
            "trend": analysis.trend,
            "bias": analysis.bias,
            "confidence": analysis.confidence,
            "analysis": analysis.model_dump(),
            "chart_image_url": None,
            "share_id": uuid.uuid4().hex[:12],
            "credit_source": credit_source,
            "created_at": datetime.utcnow()
        }
        if extra:
            scan.update(extra)

        try:
            result = await db.scans.insert_one(scan)
        except Exception as e:
            logger.error(f"[SCAN] Failed to record scan for {user_id}: {str(e)}")
            raise ServerError("Failed to record scan") from e

        scan["_id"] = result.inserted_id
        return scan

    async def scan_single_pair(
        self,
        symbol: str,
        display: str,
        timeframe: str,
        user_id: str,
        credit_source: str,
        db
    ) -> Signal:
        """
        Exactly one provider call, then one recorded Scan

        Raises:
            ProviderError: nothing is recorded
        """
        logger.info(f"[SCAN] {display} {timeframe} for user {user_id} ({credit_source})")

        raw = await self.provider.analyze(symbol, display, timeframe)
        analysis = normalize_analysis(raw, symbol, timeframe)

        scan = await self._record(symbol, display, timeframe, user_id, credit_source, analysis, db)
        return build_signal(scan, analysis)

    async def run_signal_scan(
        self,
        pairs: Optional[List[Dict[str, str]]],
        timeframes: Optional[List[str]],
        user_id: str,
        db,
        via_topup: bool = False
    ) -> dict:
        """
        Sequential scan over every pair/timeframe combination

        A failed combination lands in errors and the batch carries on. Once
        the batch deadline passes, remaining combinations are not attempted.
        """
        pairs = pairs or SCAN_PAIRS
        timeframes = timeframes or list(SCAN_TIMEFRAMES)
        started = self.clock()
        deadline = started + self.batch_timeout
        batch_id = uuid.uuid4().hex

        combos = [(pair, tf) for pair in pairs for tf in timeframes]
        signals: List[Signal] = []
        errors: List[str] = []
        attempted = 0
        recorded = 0

        for index, (pair, tf) in enumerate(combos):
            if self.clock() >= deadline:
                skipped = len(combos) - index
                errors.append(f"Scan deadline reached; {skipped} pair(s) not attempted")
                logger.warning(f"[SCAN] Batch {batch_id} hit deadline with {skipped} remaining")
                break

            attempted += 1
            display = pair["display"]
            try:
                raw = await self.provider.analyze(pair["symbol"], display, tf)
                analysis = normalize_analysis(raw, pair["symbol"], tf)
                scan = await self._record(
                    pair["symbol"], display, tf, user_id, "batch", analysis, db,
                    extra={"batch_id": batch_id, "batch_topup": via_topup}
                )
            except (ProviderError, ServerError) as e:
                errors.append(f"{display} {tf}: {e.message}")
                continue

            recorded += 1
            if is_tradeable(analysis):
                signals.append(build_signal(scan, analysis))

        signals.sort(key=lambda s: s.confidence, reverse=True)
        duration_ms = int((self.clock() - started) * 1000)

        logger.info(
            f"[SCAN] Batch {batch_id}: {len(signals)} signals from {attempted} pairs, "
            f"{len(errors)} errors in {duration_ms}ms"
        )

        return {
            "signalsGenerated": len(signals),
            "scannedPairs": attempted,
            "signals": signals,
            "errors": errors,
            "scanDuration": duration_ms,
            "recorded": recorded
        }


def strip_trade_levels(analysis: dict) -> dict:
    return {key: value for key, value in analysis.items() if key not in TRADE_LEVEL_FIELDS}


async def get_shared_scan(share_id: str, viewer_id: Optional[str], db) -> dict:
    """
    Public view of a scan

    Trade levels are only included for the owner or a viewer on an active paid plan.
    """
    scan = await db.scans.find_one({"share_id": share_id})
    if not scan:
        raise NotFound("Scan not found")

    owner = await db.profiles.find_one({"_id": to_object_id(scan["user_id"])}, {"full_name": 1})
    owner_name = (owner or {}).get("full_name") or "Signal Desk Trader"

    is_owner = viewer_id is not None and viewer_id == scan["user_id"]
    is_paid = False
    if viewer_id and not is_owner:
        viewer = await db.profiles.find_one(
            {"_id": to_object_id(viewer_id)},
            {"plan_id": 1, "subscription_status": 1}
        )
        is_paid = bool(
            viewer
            and viewer.get("subscription_status") == "active"
            and viewer.get("plan_id") not in (None, "free")
        )

    show_full = is_owner or is_paid
    analysis = scan.get("analysis") or {}

    return {
        "scan": {
            "shareId": scan["share_id"],
            "pair": scan["pair"],
            "displayPair": scan.get("display_pair"),
            "timeframe": scan["timeframe"],
            "trend": scan.get("trend"),
            "bias": scan.get("bias"),
            "confidence": scan.get("confidence"),
            "chartImageUrl": scan.get("chart_image_url"),
            "createdAt": serialize_value(scan.get("created_at")),
            "ownerName": owner_name
        },
        "analysis": analysis if show_full else strip_trade_levels(analysis),
        "access": "full" if show_full else "limited",
        "isOwner": is_owner
    }
