"""Narrow contracts for the external collaborators of the reporting pipeline."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from convreport.capi.events import OutboundEvent
from convreport.records import ConversionRecord


@dataclass(frozen=True)
class QueueMessage:
    message_id: str
    receipt_handle: str
    body: str


class MessageQueue(Protocol):
    def receive(self) -> list[QueueMessage]: ...

    def delete(self, receipt_handle: str) -> None: ...


class ObjectStore(Protocol):
    def read(self, bucket: str, key: str) -> Any: ...


class ReportingLookups(Protocol):
    def list_subscribed_campaign_ids(self) -> set[str]: ...

    def list_active_pixel_ids(self, traffic_source: str) -> set[str]: ...

    def get_token(self, pixel_id: str) -> str: ...


class ConversionRepository(Protocol):
    def find_by_key(self, session_id: str, keyword_clicked: str) -> ConversionRecord | None: ...

    def exists(self, session_id: str, keyword_clicked: str) -> bool: ...

    def upsert_many(self, records: Iterable[ConversionRecord]) -> int: ...


class EventSink(Protocol):
    async def post_events(self, pixel_id: str, token: str, events: Sequence[OutboundEvent]) -> dict[str, Any]: ...
