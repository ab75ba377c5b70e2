"""
Trade Bridge
Order execution lives in a separate process; this module only forwards to it
"""
from abc import ABC, abstractmethod
from typing import Optional
import logging

import httpx

from config import settings
from signaldesk.errors import ProviderError

logger = logging.getLogger(__name__)


class TradeBridge(ABC):
    """Broker session capability"""

    @abstractmethod
    async def connect(self, credentials: dict) -> str:
        """Open a broker session and return its id"""

    @abstractmethod
    async def execute(self, session_id: str, order: dict) -> dict:
        """Place an order in an open session"""

    @abstractmethod
    async def disconnect(self, session_id: str) -> None:
        """Close a broker session"""


class HttpTradeBridge(TradeBridge):
    """Talks to the bridge service over HTTP"""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url if base_url is not None else settings.TRADE_BRIDGE_URL).rstrip("/")
        self.token = token if token is not None else settings.TRADE_BRIDGE_TOKEN
        self.timeout = timeout or settings.TRADE_BRIDGE_TIMEOUT_SECONDS

    async def _post(self, path: str, payload: dict) -> dict:
        if not self.base_url:
            raise ProviderError("Trade bridge is not configured")

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}{path}", headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"[TRADE] Bridge request {path} failed: {str(e)}")
            raise ProviderError("Trade bridge unreachable") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200:
            message = data.get("error") or f"Trade bridge error: {response.status_code}"
            logger.warning(f"[TRADE] Bridge {path} returned {response.status_code}: {message}")
            raise ProviderError(message)

        return data

    async def connect(self, credentials: dict) -> str:
        data = await self._post("/connect", credentials)
        session_id = data.get("sessionId")
        if not session_id:
            raise ProviderError(data.get("error") or "Trade bridge did not open a session")
        return session_id

    async def execute(self, session_id: str, order: dict) -> dict:
        return await self._post("/execute", {"sessionId": session_id, **order})

    async def disconnect(self, session_id: str) -> None:
        await self._post("/disconnect", {"sessionId": session_id})


def get_trade_bridge() -> TradeBridge:
    """FastAPI dependency; tests override it with a stub"""
    return HttpTradeBridge()
