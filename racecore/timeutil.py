"""
timeutil.py — Timestamp parsing and elapsed-time formatting.

All stored timestamps are ISO-8601 strings. Values without an offset are
read as UTC so that device exports (which carry "Z") and locally typed
race start times compare on the same clock.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(ts: str) -> datetime:
    """Parse an ISO-8601 timestamp ('2025-01-01T08:15:00Z', '2025-01-01 08:15')."""
    text = ts.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def try_parse_timestamp(ts: Optional[str]) -> Optional[datetime]:
    """parse_timestamp, or None for empty or unparseable input."""
    if not ts:
        return None
    try:
        return parse_timestamp(ts)
    except (TypeError, ValueError):
        return None


def race_start(date: str, start_time: str) -> datetime:
    """Combine a race date ('2025-01-01') and start time ('07:00' / '07:00:00')."""
    return parse_timestamp(f"{date}T{start_time}")


def format_elapsed(seconds: float | None) -> str:
    """Format elapsed seconds as zero-padded HH:MM:SS, whole seconds (truncated)."""
    if seconds is None:
        return ""
    neg = seconds < 0
    s = int(abs(seconds))
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    text = f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"-{text}" if neg else text
