"""Centralised wall-clock helpers — single source of truth for 'now'.

State timestamps, backoff schedules, lock ages and finding dates all read the
clock through here.  Time-dependent policy (``decide``, ``mark_failure``,
``parse_since``) also takes an explicit ``now`` so tests pin time by argument.
"""

from __future__ import annotations

from datetime import datetime, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_utc() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def today_str() -> str:
    """ISO 8601 date string: '2026-02-23'"""
    return now_utc().strftime("%Y-%m-%d")


def file_stamp() -> str:
    """Filesystem-safe timestamp: '2026-02-23T10-04-11-123456Z'"""
    return now_utc().strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
