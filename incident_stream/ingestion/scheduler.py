"""Quota-aware next-poll decision.

Kept apart from the engine so the trade-off between draining a backlog and
staying inside the upstream call quota can be tested without demand
bookkeeping.
"""

from __future__ import annotations

import math
from typing import Optional

from incident_stream.ingestion.base import FetchOutcome

# 365 Defender incidents API quotas.
MAX_CALLS_PER_MINUTE = 50
DEFAULT_FETCH_INTERVAL_MS = 5000


def quota_min_interval(calls_per_minute: int = MAX_CALLS_PER_MINUTE) -> int:
    """Shortest spacing in ms between calls that keeps under ``calls_per_minute``."""
    if calls_per_minute <= 0:
        raise ValueError("calls_per_minute must be positive")
    return math.ceil(60_000 / calls_per_minute)


def next_delay(
    outcome: FetchOutcome,
    pending_demand_after: int,
    fetch_interval: int,
    quota_interval: int,
) -> Optional[int]:
    """Milliseconds until the next fetch, or None when no timer should be armed.

    - nothing delivered (empty page or failure): ``fetch_interval``
    - demand satisfied: None, wait for more demand
    - demand left after a non-empty page: ``quota_interval``
    """
    if not outcome.records:
        return fetch_interval
    if pending_demand_after <= 0:
        return None
    return quota_interval
