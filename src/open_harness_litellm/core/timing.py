"""Wall-clock helpers for telemetry (epoch milliseconds and ISO-8601)."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> float:
    return time.time() * 1000


def iso_from_ms(ms: float) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(
        timespec="milliseconds",
    )
