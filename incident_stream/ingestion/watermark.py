"""Watermark tracking for incremental fetches.

The watermark is the ``lastUpdateTime`` lower bound of the next fetch. It only
ever moves forward: a batch can hold records older than the current mark
(clock skew, out-of-order upstream writes) and those are still delivered, they
just do not pull the mark back.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from incident_stream.core.logging import get_logger

log = get_logger("ingestion.watermark")

# The API reports up to 7 fractional digits; datetime takes at most 6.
_FRACTION = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp to an aware UTC datetime, or None."""
    if not value:
        return None
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, str):
            value = _FRACTION.sub(r"\1", value.strip()).replace("Z", "+00:00")
            parsed = datetime.fromisoformat(value)
        else:
            return None
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a watermark the way the ``$filter`` query expects it."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def max_record_timestamp(records: Iterable[Any]) -> Optional[datetime]:
    """Latest parseable ``last_update_time`` in ``records``; unusable ones are skipped."""
    newest: Optional[datetime] = None
    for record in records:
        raw = getattr(record, "last_update_time", None)
        ts = parse_timestamp(raw)
        if ts is None:
            log.debug(f"Record {getattr(record, 'receipt', None)} has no usable lastUpdateTime ({raw!r})")
            continue
        if newest is None or ts > newest:
            newest = ts
    return newest


def next_watermark(current: datetime, candidate: Optional[datetime]) -> datetime:
    if candidate is None or candidate <= current:
        return current
    return candidate


class WatermarkTracker:
    """Holds the current watermark for one engine."""

    def __init__(self, initial: Optional[datetime] = None):
        self._current = parse_timestamp(initial) or datetime.now(timezone.utc)

    @property
    def current(self) -> datetime:
        return self._current

    def advance(self, candidate: Optional[datetime]) -> datetime:
        """Move to ``max(current, candidate)`` and return the result."""
        self._current = next_watermark(self._current, candidate)
        return self._current

    def advance_from_batch(self, records: Iterable[Any]) -> datetime:
        return self.advance(max_record_timestamp(records))

    def __repr__(self) -> str:
        return f"WatermarkTracker(current={format_timestamp(self._current)})"
