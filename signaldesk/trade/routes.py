"""
Trade Routes
Authenticated pass-through to the trade bridge
"""
import logging
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional

from signaldesk.auth.jwt_handler import get_current_user_id
from signaldesk.trade.bridge import TradeBridge, get_trade_bridge

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/trade", tags=["Trade"])


class ConnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    login: str = Field(min_length=1)
    password: str = Field(min_length=1)
    server: str = Field(min_length=1)
    server_url: str = Field(alias="serverUrl", min_length=1)


class ExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    symbol: str = Field(min_length=1)
    type: Literal["BUY", "SELL"]
    lots: float = Field(gt=0)
    sl: Optional[float] = None
    tp: Optional[float] = None


class DisconnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)


@router.post("/connect")
async def connect(
    request: ConnectRequest,
    user_id: str = Depends(get_current_user_id),
    bridge: TradeBridge = Depends(get_trade_bridge)
):
    session_id = await bridge.connect({
        "login": request.login,
        "password": request.password,
        "server": request.server,
        "serverUrl": request.server_url
    })
    logger.info(f"[TRADE] Session opened for user {user_id}")
    return {"success": True, "sessionId": session_id}


@router.post("/execute")
async def execute(
    request: ExecuteRequest,
    user_id: str = Depends(get_current_user_id),
    bridge: TradeBridge = Depends(get_trade_bridge)
):
    order = {"symbol": request.symbol, "type": request.type, "lots": request.lots}
    if request.sl is not None:
        order["sl"] = request.sl
    if request.tp is not None:
        order["tp"] = request.tp

    result = await bridge.execute(request.session_id, order)
    logger.info(f"[TRADE] {request.type} {request.lots} {request.symbol} for user {user_id}")
    return result


@router.post("/disconnect")
async def disconnect(
    request: DisconnectRequest,
    user_id: str = Depends(get_current_user_id),
    bridge: TradeBridge = Depends(get_trade_bridge)
):
    await bridge.disconnect(request.session_id)
    return {"success": True}
