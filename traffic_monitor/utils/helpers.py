"""
Helper Functions

This module contains utility functions used throughout the application.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from dateutil import parser as dtparser

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def ms_to_datetime(ms: int) -> datetime:
    """Epoch milliseconds to an aware UTC datetime"""
    return EPOCH + timedelta(milliseconds=ms)


def datetime_to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def parse_ts(x: Any) -> Optional[datetime]:
    """Parse timestamp from various formats"""
    if not x:
        return None
    if isinstance(x, datetime):
        dt = x
    else:
        try:
            dt = dtparser.isoparse(str(x))
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def safe_int(x: Any) -> Optional[int]:
    """Safely convert to int"""
    try:
        return int(x) if x is not None else None
    except (TypeError, ValueError):
        return None


def align_down(value: int, step: int) -> int:
    """Align value down to a multiple of step"""
    return (value // step) * step


def parse_bool_flag(x: Optional[str]) -> Optional[bool]:
    """'true'/'false' query flags; anything else means no filter"""
    if x is None:
        return None
    s = x.strip().lower()
    if s == "true":
        return True
    if s == "false":
        return False
    return None

