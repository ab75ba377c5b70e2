"""In-process TTL cache for a single response value"""
import time
from typing import Any, Optional


class ResponseCache:
    """
    Holds one value and the time it was stored.

    Times are plain seconds from whatever clock the caller uses
    (time.monotonic by default). A TTL of 0 disables caching.
    """

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self.value: Optional[Any] = None
        self.stored_at: Optional[float] = None

    def get(self, now: Optional[float] = None) -> Optional[Any]:
        if self.ttl_seconds <= 0 or self.stored_at is None:
            return None
        now = time.monotonic() if now is None else now
        if now - self.stored_at >= self.ttl_seconds:
            return None
        return self.value

    def put(self, value: Any, now: Optional[float] = None) -> None:
        if self.ttl_seconds <= 0:
            return
        self.value = value
        self.stored_at = time.monotonic() if now is None else now

    def invalidate(self) -> None:
        self.value = None
        self.stored_at = None
