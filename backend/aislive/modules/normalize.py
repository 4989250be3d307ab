"""AIS position validation and normalization helpers."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any


# Reports stamped further ahead than this are treated as clock skew
FUTURE_TOLERANCE = timedelta(minutes=5)

_COMMON_TIMESTAMP_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
]


def validate_position(lat: float, lon: float) -> str | None:
    """Validate a WGS84 coordinate pair.

    Returns an error string if invalid, None if valid. Bounds are inclusive:
    latitude in [-90, 90], longitude in [-180, 180]. NaN and infinities fail.
    """
    if not isinstance(lat, (int, float)) or isinstance(lat, bool):
        return f"Invalid latitude: {lat!r}"
    if not isinstance(lon, (int, float)) or isinstance(lon, bool):
        return f"Invalid longitude: {lon!r}"
    if not (-90 <= lat <= 90):
        return f"Latitude out of range: {lat}"
    if not (-180 <= lon <= 180):
        return f"Longitude out of range: {lon}"
    return None


def normalize_longitude(lon: float) -> float:
    """Wrap a longitude into the (-180, 180] range."""
    if not math.isfinite(lon):
        raise ValueError(f"Longitude must be finite: {lon}")
    while lon <= -180:
        lon += 360
    while lon > 180:
        lon -= 360
    return lon


def parse_timestamp_flexible(ts: Any) -> datetime | None:
    """Parse a timestamp from various formats.

    Returns a datetime object or None if parsing fails.
    Supports: ISO 8601, Go-style "... +0000 UTC" strings
    (the aisstream.io ``time_utc`` format) and common strftime formats.
    Naive results are assumed to be UTC.
    """
    if not isinstance(ts, str):
        return None

    ts_str = ts.strip()
    if not ts_str:
        return None

    # Go-style: "2024-12-29 18:22:32.318353 +0000 UTC"
    if ts_str.endswith(" UTC"):
        cleaned = ts_str[:-4].strip()
        # Go prints up to nanoseconds; strptime's %f takes at most six digits
        head, dot, rest = cleaned.partition(".")
        if dot:
            frac, _, tail = rest.partition(" ")
            cleaned = f"{head}.{frac[:6]} {tail}".strip()
        for go_fmt in (
            "%Y-%m-%d %H:%M:%S.%f %z",
            "%Y-%m-%d %H:%M:%S %z",
            "%Y-%m-%d %H:%M:%S.%f",
            "%Y-%m-%d %H:%M:%S",
        ):
            try:
                parsed = datetime.strptime(cleaned, go_fmt)
            except ValueError:
                continue
            return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)

    # ISO 8601
    try:
        parsed = datetime.fromisoformat(ts_str.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
    if parsed is not None:
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)

    for fmt in _COMMON_TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(ts_str, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def normalize_report_time(raw: Any, received_at: datetime) -> datetime:
    """Return the canonical last-seen time for a report.

    The source timestamp is converted to an aware UTC datetime. A missing or
    unparseable timestamp, or one further in the future than
    FUTURE_TOLERANCE, falls back to *received_at*.
    """
    received_utc = received_at.astimezone(timezone.utc)
    parsed = parse_timestamp_flexible(raw) if raw is not None else None
    if parsed is None:
        return received_utc
    parsed = parsed.astimezone(timezone.utc)
    if parsed > received_utc + FUTURE_TOLERANCE:
        return received_utc
    return parsed
