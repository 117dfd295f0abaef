"""Validity labeling of conversion records against reporting rules."""

from __future__ import annotations

import time
from collections.abc import Callable, Collection, Iterable
from typing import Any

from convreport.records import ConversionRecord, coerce_epoch_seconds

SEVEN_DAYS_IN_SECONDS = 7 * 24 * 60 * 60

INVALID_PIXEL = "Invalid pixel"
CONVERSION_TOO_OLD = "Conversion older than 7 days"
MISSING_CLICK_ID = "Missing traffic source click id"


def is_within_last_7_days(timestamp: Any, *, now: float | None = None) -> bool:
    """True when ``timestamp`` is integer epoch seconds less than 7 days before ``now``.

    Malformed timestamps (non-numeric, fractional, booleans, missing) fail the check.
    """
    seconds = coerce_epoch_seconds(timestamp)
    if seconds is None:
        return False
    now_seconds = int(now if now is not None else time.time())
    return now_seconds - seconds < SEVEN_DAYS_IN_SECONDS


def invalid_reason(record: ConversionRecord, active_pixels: Collection[str], *, now: float | None = None) -> str | None:
    """Return the first failing rule for ``record``, or None when it is valid."""
    if record.pixel_id not in active_pixels:
        return INVALID_PIXEL
    if not is_within_last_7_days(record.click_timestamp, now=now):
        return CONVERSION_TOO_OLD
    if record.ts_click_id in ("", None):
        return MISSING_CLICK_ID
    return None


def classify_record(
    record: ConversionRecord, active_pixels: Collection[str], *, now: float | None = None
) -> ConversionRecord:
    reason = invalid_reason(record, active_pixels, now=now)
    return record.model_copy(update={"valid": reason is None, "invalid_reason": reason})


def classify_records(
    records: Iterable[ConversionRecord],
    active_pixels: Collection[str],
    *,
    now_fn: Callable[[], float] = time.time,
) -> list[ConversionRecord]:
    """Label every record, using a single clock reading for the whole batch."""
    now = now_fn()
    pixels = frozenset(active_pixels)
    return [classify_record(record, pixels, now=now) for record in records]
