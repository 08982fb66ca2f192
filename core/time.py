# PATH: core/time.py
"""
Time utilities for the simulation overlay.
"""

import time
from datetime import datetime, timezone


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Get current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def elapsed_ms(start_ms: int) -> int:
    """Milliseconds elapsed since start_ms."""
    return now_ms() - start_ms


def to_datetime(unix_seconds: int) -> datetime:
    """Convert a block timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(unix_seconds, tz=timezone.utc)
