"""In-process telemetry events.

Handlers are attached per event name (a tuple of strings) and called
synchronously from ``execute``. A handler that raises is detached and
logged; telemetry never breaks the pipeline that emits it.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from incident_stream.core.logging import get_logger

log = get_logger("telemetry")

EventName = Tuple[str, ...]
Handler = Callable[[EventName, Dict[str, Any], Dict[str, Any], Any], None]

PREFIX: EventName = ("incident_stream", "receive_messages")
START_EVENT: EventName = PREFIX + ("start",)
STOP_EVENT: EventName = PREFIX + ("stop",)
EXCEPTION_EVENT: EventName = PREFIX + ("exception",)
ACK_EVENT: EventName = PREFIX + ("ack",)

_handlers: Dict[str, Tuple[EventName, Handler, Any]] = {}


def system_time() -> int:
    return time.time_ns()


def attach(handler_id: str, event: EventName, handler: Handler, config: Any = None) -> None:
    """Attach ``handler`` to ``event``. Raises ValueError if ``handler_id`` is taken."""
    if handler_id in _handlers:
        raise ValueError(f"telemetry handler {handler_id!r} already attached")
    _handlers[handler_id] = (tuple(event), handler, config)


def detach(handler_id: str) -> bool:
    return _handlers.pop(handler_id, None) is not None


def execute(event: EventName, measurements: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> None:
    event = tuple(event)
    metadata = metadata or {}
    for handler_id, (name, handler, config) in list(_handlers.items()):
        if name != event:
            continue
        try:
            handler(event, measurements, metadata, config)
        except Exception as exc:  # noqa: BLE001
            _handlers.pop(handler_id, None)
            log.error(f"Telemetry handler {handler_id!r} failed on {'.'.join(event)} and was detached: {exc}")


@contextmanager
def span(prefix: EventName, metadata: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """Emit ``start``/``stop`` around a block, or ``exception`` if it raises.

    The yielded dict is merged into the stop metadata, so the block can
    report results (e.g. ``received``).
    """
    prefix = tuple(prefix)
    start = time.monotonic_ns()
    execute(prefix + ("start",), {"system_time": system_time(), "monotonic_time": start}, dict(metadata))
    extra: Dict[str, Any] = {}
    try:
        yield extra
    except Exception as exc:
        execute(
            prefix + ("exception",),
            {"duration": time.monotonic_ns() - start},
            {**metadata, "kind": type(exc).__name__, "reason": str(exc)},
        )
        raise
    execute(prefix + ("stop",), {"duration": time.monotonic_ns() - start}, {**metadata, **extra})
