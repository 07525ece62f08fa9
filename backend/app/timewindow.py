"""Time-window helpers shared by the quota policies and the metrics aggregator."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

DAY = timedelta(days=1)
SESSION_GAP = timedelta(minutes=30)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a row timestamp to an aware UTC datetime.

    Accepts datetimes (naive values are taken as UTC) and ISO-8601 strings,
    including the trailing ``Z`` form. Anything else yields ``None`` so the
    caller can drop the row.
    """

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def in_window(moment: datetime, start: datetime, end: datetime) -> bool:
    """Half-open membership test: ``start <= moment < end``."""
    return start <= moment < end


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def percent(numerator: float, denominator: float) -> float:
    """Unrounded percentage, 0 when the denominator is empty."""
    if denominator <= 0:
        return 0.0
    return numerator / denominator * 100


def ceil_seconds(delta: float) -> int:
    return max(0, math.ceil(delta))
