"""
Scan Models
Canonical analysis shape and the signal returned to clients
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional


class AnalysisResult(BaseModel):
    """Normalized provider analysis for one pair/timeframe"""
    pair: str
    timeframe: str
    trend: str
    bias: str
    confidence: int = 0
    grade: Optional[str] = None
    structure: Optional[str] = None
    support: Optional[float] = None
    resistance: Optional[float] = None
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_reward: Optional[str] = None
    confluences: List[str] = []
    key_levels: List[Dict[str, Any]] = []
    annotations: List[Dict[str, Any]] = []
    notes: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        try:
            value = int(round(float(v)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, value))

    @field_validator("trend", "bias", mode="before")
    @classmethod
    def require_text(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("must not be empty")
        return str(v).strip()


# Fields hidden from public share views unless the viewer has full access
TRADE_LEVEL_FIELDS = (
    "support",
    "resistance",
    "entry_price",
    "stop_loss",
    "take_profit",
    "risk_reward",
    "key_levels",
    "confluences",
    "notes",
)


class Signal(BaseModel):
    """A scan result as returned to clients"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    symbol: str
    display_symbol: str = Field(alias="displaySymbol")
    timeframe: str
    direction: str
    confidence: int
    analysis: AnalysisResult
    share_id: Optional[str] = Field(default=None, alias="shareId")
    created_at: str = Field(alias="createdAt")
    expires_at: str = Field(alias="expiresAt")

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True)


class ScanRequest(BaseModel):
    """Body of POST /api/scan"""
    model_config = ConfigDict(populate_by_name=True)

    symbol: str = Field(min_length=1)
    display_symbol: str = Field(alias="displaySymbol", min_length=1)
    timeframe: str = Field(min_length=1)


class FullScanRequest(BaseModel):
    """Body of POST /api/scan/full; omitted fields mean the whole universe"""
    pairs: Optional[List[str]] = None
    timeframes: Optional[List[str]] = None
