"""
Usage Models
Computed per request; never stored
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class UsageSnapshot(BaseModel):
    """Plan allowance, consumption and top-up balance for one user (-1 = unlimited)"""
    model_config = ConfigDict(populate_by_name=True)

    plan_id: Optional[str] = Field(default=None, alias="planId")
    tier_name: str = Field(default="No plan", alias="tierName")
    can_scan: bool = Field(default=False, alias="canScan")
    scan_reason: Optional[str] = Field(default=None, alias="scanReason")
    can_scan_via_topup: bool = Field(default=False, alias="canScanViaTopup")
    daily_used: int = Field(default=0, alias="dailyUsed")
    daily_limit: int = Field(default=0, alias="dailyLimit")
    daily_remaining: int = Field(default=0, alias="dailyRemaining")
    monthly_used: int = Field(default=0, alias="monthlyUsed")
    monthly_limit: int = Field(default=0, alias="monthlyLimit")
    monthly_remaining: int = Field(default=0, alias="monthlyRemaining")
    topup_balance: int = Field(default=0, alias="topupBalance")

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True)
