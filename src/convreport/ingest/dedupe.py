"""Deduplicate incoming conversions before classification."""

from __future__ import annotations

from collections.abc import Callable, Iterable

import structlog

from convreport.records import ConversionRecord

logger = structlog.get_logger()


def split_new(
    records: Iterable[ConversionRecord], exists: Callable[[str, str], bool]
) -> tuple[list[ConversionRecord], list[ConversionRecord]]:
    """Split records into (new, already_seen).

    A record is already seen when the durable store holds it as reported or
    invalid, or when an earlier record in the same batch had the same key.
    """
    seen: set[tuple[str, str]] = set()
    new: list[ConversionRecord] = []
    skipped: list[ConversionRecord] = []

    for record in records:
        key = record.key
        if key in seen:
            skipped.append(record)
            continue
        seen.add(key)

        if exists(*key):
            logger.info("Existing conversion skipped", session_id=key[0], keyword_clicked=key[1])
            skipped.append(record)
            continue

        new.append(record)

    return new, skipped
