"""Detached best-effort tasks (last-seen updates and similar side effects)"""
import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight
_pending: Set[asyncio.Task] = set()


def _discard(task: asyncio.Task, label: str) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"[BACKGROUND] {label} failed (ignored): {exc}")


def spawn_detached(coro: Awaitable, label: str) -> asyncio.Task:
    """Schedule coro without awaiting it; its failure never reaches the caller"""
    task = asyncio.ensure_future(coro)
    _pending.add(task)
    task.add_done_callback(lambda t: _discard(t, label))
    return task


async def drain_pending() -> None:
    """Wait for in-flight detached tasks (shutdown and tests)"""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
