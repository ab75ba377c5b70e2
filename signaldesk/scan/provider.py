"""
Chart Analysis Provider
One chat-completions request per pair/timeframe; the reply must be a JSON analysis
"""
import json
import logging
import re
from typing import Optional

import httpx

from config import settings
from signaldesk.errors import ProviderError

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """You are a forex chart analyst using Smart Money Concepts.
Analyze the requested pair on the requested timeframe and decide whether a
quality setup exists. If none does, return grade "D" and bias "neutral".

Grade by confluence count (trend alignment, confirmed BOS/CHoCH, order block
or supply/demand zone, RSI confirmation, FVG or liquidity target, key level
reaction): A = 5-6, B = 3-4, C = 2, D = 0-1.

Return ONLY valid JSON with these keys:
{
  "trend": "Bullish" | "Bearish" | "Ranging",
  "bias": "bullish" | "bearish" | "neutral",
  "confidence": 0-100,
  "grade": "A" | "B" | "C" | "D",
  "structure": "short market structure description",
  "support": number,
  "resistance": number,
  "entry_price": number,
  "stop_loss": number,
  "take_profit": number,
  "risk_reward": "1:2.3",
  "confluences": ["..."],
  "key_levels": [{"price": number, "type": "support" | "resistance", "strength": "strong" | "moderate"}],
  "annotations": [{"type": "zone" | "line", "label": "...", "price": number}],
  "notes": "2-3 sentence explanation of the setup"
}"""

_FENCE = re.compile(r"```(?:json)?\s*|```")


def parse_reply(text: str) -> dict:
    """Strip markdown fences and decode the JSON object"""
    cleaned = _FENCE.sub("", text or "").strip()
    if not cleaned:
        raise ProviderError("Analysis provider returned an empty reply")
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ProviderError("Analysis provider returned malformed JSON") from e
    if not isinstance(parsed, dict):
        raise ProviderError("Analysis provider returned malformed JSON")
    return parsed


class ChartAnalysisProvider:
    """Client for the external chart analysis model"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY
        self.url = url or settings.ANALYSIS_PROVIDER_URL
        self.model = model or settings.ANALYSIS_MODEL
        self.timeout = timeout or settings.SCAN_TIMEOUT_SECONDS

    async def analyze(self, pair: str, display: str, timeframe: str) -> dict:
        """
        Request one analysis

        Returns:
            Raw decoded analysis dict (see normalize_analysis)

        Raises:
            ProviderError: transport failure, non-200, empty or unparsable reply
        """
        if not self.api_key:
            raise ProviderError("Analysis provider is not configured")

        payload = {
            "model": self.model,
            "max_tokens": 1500,
            "messages": [
                {"role": "system", "content": ANALYSIS_PROMPT},
                {
                    "role": "user",
                    "content": f"Symbol: {display} ({pair})\nTimeframe: {timeframe}\nReturn ONLY JSON."
                }
            ]
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json"
                    },
                    json=payload
                )
        except httpx.TimeoutException as e:
            logger.error(f"[SCAN] Provider timeout for {display} {timeframe}")
            raise ProviderError("Analysis timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"[SCAN] Provider request failed for {display} {timeframe}: {str(e)}")
            raise ProviderError("Analysis provider unreachable") from e

        if response.status_code != 200:
            logger.error(f"[SCAN] Provider error {response.status_code} for {display} {timeframe}")
            raise ProviderError(f"Analysis provider error: {response.status_code}")

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError("Analysis provider returned an empty reply") from e

        return parse_reply(text)


def get_analysis_provider() -> ChartAnalysisProvider:
    """FastAPI dependency; tests override it with a stub"""
    return ChartAnalysisProvider()
