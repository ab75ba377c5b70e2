"""
Error Taxonomy & JSON Error Envelope
Every route-level failure is one of these and leaves the app as {"error": ...}
"""
from typing import Optional
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings

logger = logging.getLogger(__name__)


class SignalDeskError(Exception):
    """Base error carrying an HTTP status and extra envelope fields"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None, **payload):
        self.message = message or self.default_message
        self.payload = payload
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, **self.payload}


class Unauthenticated(SignalDeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class Forbidden(SignalDeskError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class ValidationError(SignalDeskError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class NotFound(SignalDeskError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class QuotaExceeded(SignalDeskError):
    """Raised with the caller's current usage so the client can show an upgrade prompt"""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "No scans remaining. Upgrade your plan or purchase credits."

    def __init__(self, message: Optional[str] = None, usage: Optional[dict] = None):
        super().__init__(message, usage=usage, upgrade=True)


class ProviderError(SignalDeskError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Upstream service failed"


class ServerError(SignalDeskError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"


class LedgerUnavailable(SignalDeskError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Credit ledger unavailable"


def register_exception_handlers(app: FastAPI) -> None:
    """Map the taxonomy, framework errors and anything unexpected to the envelope"""

    @app.exception_handler(SignalDeskError)
    async def signaldesk_error_handler(request: Request, exc: SignalDeskError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": f"Missing or invalid fields: {', '.join(f for f in fields if f)}"}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc) if settings.DEBUG else "Server error"}
        )
