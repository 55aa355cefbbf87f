"""Challenge phase event dispatch.

``emit_phase_event()`` fans an event out to every handler registered for its
topic via ``asyncio.create_task()`` so callers don't block. Handlers are plain
async functions; a failing handler is logged and never affects the caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[str, dict[str, Any]], Awaitable[None]]

_handlers: dict[str, list[EventHandler]] = {}
_pending: set[asyncio.Task] = set()


# ============================================================
# Registration
# ============================================================


def register_handler(topic: str, handler: EventHandler) -> None:
    """Subscribe ``handler`` to ``topic``."""
    _handlers.setdefault(topic, []).append(handler)


def clear_handlers() -> None:
    _handlers.clear()


# ============================================================
# Fan-out router
# ============================================================


def emit_phase_event(topic: str, event_data: dict[str, Any]) -> None:
    """Route an event to its handler tasks.

    This is a synchronous function safe to call from async code.
    Handlers run as fire-and-forget background tasks on the running loop.

    Args:
        topic: Bus topic (e.g. "challenge.action.phase.updated").
        event_data: The event payload dict.
    """
    handlers = _handlers.get(topic)
    if not handlers:
        logger.debug("unrouted_event", topic=topic, event_type=event_data.get("event_type"))
        return

    loop = asyncio.get_running_loop()
    for handler in handlers:
        task = loop.create_task(_run_handler(handler, topic, event_data))
        _pending.add(task)
        task.add_done_callback(_pending.discard)


async def drain_pending_events() -> None:
    """Wait for every in-flight handler task. Used on shutdown and in tests."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


async def _run_handler(handler: EventHandler, topic: str, event_data: dict[str, Any]) -> None:
    try:
        await handler(topic, event_data)
    except Exception as e:
        logger.error(
            "phase_event_handler_error",
            topic=topic,
            handler=getattr(handler, "__name__", repr(handler)),
            error=str(e),
        )
