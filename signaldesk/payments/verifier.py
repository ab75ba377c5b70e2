"""
Payment Verifier
The gateway's verification endpoint is the only authority on whether money moved
"""
import logging
from typing import Optional

import httpx

from config import settings
from signaldesk.errors import ProviderError

logger = logging.getLogger(__name__)

COMPLETED = "completed"
FAILED = "failed"
PENDING = "pending"

# Gateway transaction states that will never turn into a charge
TERMINAL_FAILURES = {"failed", "reversed", "abandoned"}


def map_gateway_status(gateway_status: Optional[str]) -> str:
    """Gateway transaction state -> payment status; unknown states stay pending"""
    value = (gateway_status or "").lower()
    if value == "success":
        return COMPLETED
    if value in TERMINAL_FAILURES:
        return FAILED
    return PENDING


class PaystackVerifier:
    """Paystack transaction verification"""

    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None, timeout: float = 30.0):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json"
        }

    async def fetch_status(self, reference: str) -> str:
        """
        Ask the gateway about one transaction

        Returns:
            "completed", "failed" or "pending"

        Raises:
            ProviderError: gateway unreachable, unconfigured or non-200
        """
        if not self.secret_key:
            raise ProviderError("Payment verifier is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/transaction/verify/{reference}",
                    headers=self.headers
                )
        except httpx.HTTPError as e:
            logger.error(f"[VERIFY] Request failed for {reference}: {str(e)}")
            raise ProviderError("Payment verifier unreachable") from e

        if response.status_code != 200:
            logger.warning(f"[VERIFY] {reference}: gateway returned {response.status_code}")
            raise ProviderError(f"Payment verifier error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("Payment verifier returned malformed JSON") from e

        transaction = data.get("data") if isinstance(data, dict) else None
        if not isinstance(transaction, dict):
            raise ProviderError("Payment verifier returned an unexpected body")

        gateway_status = transaction.get("status")
        status = map_gateway_status(gateway_status)
        logger.info(f"[VERIFY] {reference}: gateway={gateway_status} -> {status}")
        return status

    async def initialize(self, email: str, amount_cents: int, currency: str, callback_url: str, metadata: dict) -> dict:
        """
        Start a hosted checkout

        Returns:
            {"reference", "authorization_url", "access_code"}
        """
        if not self.secret_key:
            raise ProviderError("Payment gateway is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/transaction/initialize",
                    headers=self.headers,
                    json={
                        "email": email,
                        "amount": amount_cents,
                        "currency": currency,
                        "callback_url": callback_url,
                        "metadata": metadata
                    }
                )
        except httpx.TimeoutException as e:
            raise ProviderError("Payment gateway timeout. Please try again.") from e
        except httpx.HTTPError as e:
            logger.error(f"Paystack initialization error: {str(e)}")
            raise ProviderError("Payment gateway unreachable") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200 or not data.get("status"):
            message = data.get("message") or f"Paystack API error: {response.status_code}"
            logger.error(f"Paystack initialization error: {message}")
            raise ProviderError(message)

        payment_data = data["data"]
        return {
            "reference": payment_data["reference"],
            "authorization_url": payment_data["authorization_url"],
            "access_code": payment_data.get("access_code")
        }


def get_payment_verifier() -> PaystackVerifier:
    """FastAPI dependency; tests override it with a stub"""
    return PaystackVerifier()
