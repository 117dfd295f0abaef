"""Expansion of conversion records into conversions API events.

One valid record becomes zero or more outbound events depending on the
network that produced it:

- tonic / sedo: one Page View, one View Content, one Purchase per conversion
- crossroads: one Page View per lander visitor, one View Content per lander
  search, one Purchase per conversion
- anything else: Purchases only

``fbc`` and ``fbp`` are derived from the click id and the click timestamp.
``event_id`` also folds in the record key (``session_id``, ``keyword_clicked``),
the event name and the event's index within the record. Re-expanding the same
stored record on a redelivery yields the same ids, so the API deduplicates a
retried event instead of counting it twice. Two records sharing one click, or
two events of one record, never share an id.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any

from convreport.capi.states import normalize_region
from convreport.records import ConversionRecord, Network

PAGE_VIEW = "Page View"
VIEW_CONTENT = "View Content"
PURCHASE = "Purchase"

CURRENCY = "USD"
ACTION_SOURCE = "website"


@dataclass(frozen=True)
class OutboundEvent:
    """One event in the conversions API vocabulary."""

    event_name: str
    event_time: int
    event_id: str
    user_data: dict[str, Any]
    custom_data: dict[str, Any] = field(default_factory=dict)
    action_source: str = ACTION_SOURCE
    opt_out: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "event_name": self.event_name,
            "event_time": self.event_time,
            "event_id": self.event_id,
            "action_source": self.action_source,
            "user_data": dict(self.user_data),
            "opt_out": self.opt_out,
            "custom_data": dict(self.custom_data),
        }


@dataclass(frozen=True)
class ExpandedRecord:
    """A record (with landings applied) and the events generated for it."""

    record: ConversionRecord
    events: tuple[OutboundEvent, ...]


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def apply_landings(record: ConversionRecord) -> ConversionRecord:
    """Set the network-specific ``landings``/``serp_landings`` pair."""
    network = record.network_type
    if network in (Network.TONIC, Network.SEDO):
        return record.model_copy(update={"landings": 1, "serp_landings": 1})
    if network == Network.CROSSROADS:
        return record.model_copy(
            update={"landings": record.lander_visitors, "serp_landings": record.lander_searches}
        )
    return record


def click_id_fbc(ts_click_id: str, click_seconds: int) -> str:
    return f"fb.1.{click_seconds * 1000}.{ts_click_id}"


def click_id_fbp(ts_click_id: str, click_seconds: int) -> str:
    browser_number = int(sha256_hex(f"fbp:{ts_click_id}:{click_seconds}")[:12], 16) % 10**10
    return f"fb.1.{click_seconds * 1000}.{browser_number}"


def event_id_for(
    record_key: tuple[str, str], ts_click_id: str, click_seconds: int, event_name: str, iteration: int
) -> str:
    session_id, keyword_clicked = record_key
    digest = sha256_hex(f"{session_id}:{keyword_clicked}:{ts_click_id}:{click_seconds}:{event_name}:{iteration}")[:16]
    return f"{ts_click_id}-{iteration}-{digest}"


def build_user_data(record: ConversionRecord, click_seconds: int) -> dict[str, Any]:
    ts_click_id = record.ts_click_id or ""
    state = normalize_region(record.region, record.country_code)
    return {
        "country": [sha256_hex(record.country_code.lower())],
        "client_ip_address": record.ip,
        "client_user_agent": record.user_agent,
        "ct": [sha256_hex(record.city.lower().replace(" ", ""))],
        "fbc": click_id_fbc(ts_click_id, click_seconds),
        "fbp": click_id_fbp(ts_click_id, click_seconds),
        "st": [sha256_hex(state)],
    }


def _base_custom_data(record: ConversionRecord) -> dict[str, Any]:
    custom: dict[str, Any] = {}
    if record.vertical is not None:
        custom["content_type"] = record.vertical
    if record.category is not None:
        custom["content_category"] = record.category
    return custom


def expand_record(record: ConversionRecord) -> ExpandedRecord:
    """Turn one valid record into its ordered list of outbound events."""
    click_seconds = record.click_timestamp_seconds()
    if click_seconds is None:
        raise ValueError(f"Cannot expand record {record.key}: click_timestamp is not integer epoch seconds")

    ts_click_id = record.ts_click_id or ""
    user_data = build_user_data(record, click_seconds)
    base_custom = _base_custom_data(record)
    events: list[OutboundEvent] = []

    def add(event_name: str, iteration: int, custom_overrides: dict[str, Any]) -> None:
        events.append(
            OutboundEvent(
                event_name=event_name,
                event_time=click_seconds,
                event_id=event_id_for(record.key, ts_click_id, click_seconds, event_name, iteration),
                user_data=user_data,
                custom_data={**base_custom, **custom_overrides},
            )
        )

    network = record.network_type
    if network in (Network.TONIC, Network.SEDO):
        add(PAGE_VIEW, 0, {})
        add(VIEW_CONTENT, 0, {"content_name": record.keyword_clicked})
    elif network == Network.CROSSROADS:
        for i in range(max(record.lander_visitors, 0)):
            add(PAGE_VIEW, i, {})
        for i in range(max(record.lander_searches, 0)):
            add(VIEW_CONTENT, i, {"content_name": record.keyword_clicked})

    if record.conversions > 0:
        value = float(record.revenue / record.conversions)
        for i in range(record.conversions):
            add(
                PURCHASE,
                i,
                {"currency": CURRENCY, "value": value, "content_name": record.keyword_clicked},
            )

    return ExpandedRecord(record=apply_landings(record), events=tuple(events))
