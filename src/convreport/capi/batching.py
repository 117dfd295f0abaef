"""Packing of outbound events into capped per-pixel batches."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from convreport.capi.events import ExpandedRecord, OutboundEvent
from convreport.records import ConversionRecord

MAX_EVENTS = 1000


@dataclass
class Batch:
    """Events sent to one pixel in one API call, plus the records behind them."""

    pixel_id: str
    events: list[OutboundEvent] = field(default_factory=list)
    records: list[ConversionRecord] = field(default_factory=list)
    _record_keys: set[tuple[str, str]] = field(default_factory=set, repr=False)

    @property
    def total_payloads(self) -> int:
        return len(self.events)

    def add(self, event: OutboundEvent, record: ConversionRecord) -> None:
        self.events.append(event)
        if record.key not in self._record_keys:
            self._record_keys.add(record.key)
            self.records.append(record)


def group_by_pixel(expanded: Iterable[ExpandedRecord]) -> dict[str, list[ExpandedRecord]]:
    """Group expanded records by destination pixel, keeping first-seen order."""
    grouped: dict[str, list[ExpandedRecord]] = {}
    for item in expanded:
        grouped.setdefault(item.record.pixel_id or "", []).append(item)
    return grouped


def plan_batches(pixel_id: str, expanded: Iterable[ExpandedRecord], max_events: int = MAX_EVENTS) -> list[Batch]:
    """Greedy, order-preserving packing of one pixel's events.

    A new batch starts whenever the next event would push the current one past
    ``max_events``. A record whose events straddle the boundary appears in both
    batches.
    """
    if max_events < 1:
        raise ValueError("max_events must be at least 1")

    batches: list[Batch] = []
    current = Batch(pixel_id=pixel_id)

    for item in expanded:
        for event in item.events:
            if current.total_payloads + 1 > max_events:
                batches.append(current)
                current = Batch(pixel_id=pixel_id)
            current.add(event, item.record)

    if current.events:
        batches.append(current)
    return batches
