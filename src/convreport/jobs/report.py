"""Conversion reporting pipeline for one queue message.

    fetch -> subscription filter -> dedup filter -> classify
          -> expand / batch / dispatch -> reconcile -> persist

Filtered and duplicate records are dropped and never persisted. Invalid
records skip dispatch and persist with ``reported=0``. Dispatched records
persist with ``reported=1`` on success and ``reported=0`` on failure. All three
populations are written in one final upsert.

``process_message`` either returns (the message may be deleted) or raises
(the message stays on the queue and redelivery retries the whole pipeline).
Dedup plus upsert make a rerun on the same input safe.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

import structlog

from convreport.capi.batching import MAX_EVENTS
from convreport.capi.dispatch import DispatchResult, Dispatcher
from convreport.capi.events import apply_landings, expand_record
from convreport.errors import MessageFormatError
from convreport.ingest.dedupe import split_new
from convreport.ingest.messages import ObjectRef, extract_object_refs, parse_source_key
from convreport.ingest.subscriptions import filter_subscribed
from convreport.metrics import MetricsCollector
from convreport.ports import ConversionRepository, EventSink, ObjectStore, QueueMessage, ReportingLookups
from convreport.records import ConversionRecord, parse_records
from convreport.validity import classify_records

logger = structlog.get_logger()


class MessageState(str, Enum):
    RECEIVED = "received"
    FETCHED = "fetched"
    SUBSCRIPTION_FILTERED = "subscription_filtered"
    DEDUP_FILTERED = "dedup_filtered"
    CLASSIFIED = "classified"
    EXPANDED = "expanded"
    DISPATCHED = "dispatched"
    RECONCILED = "reconciled"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class ReportStats:
    """Per-message counts, returned to the caller and logged."""

    state: MessageState = MessageState.RECEIVED
    objects: int = 0
    received: int = 0
    subscribed: int = 0
    duplicates: int = 0
    new: int = 0
    valid: int = 0
    invalid: int = 0
    events: int = 0
    batches: int = 0
    batches_failed: int = 0
    reported: int = 0
    failed: int = 0
    persisted: int = 0
    invalid_reasons: dict[str, int] = field(default_factory=dict)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class ConversionReporter:
    """
    Runs the reporting pipeline against injected collaborators.

    Blocking collaborators (object store, lookups, repository) run through
    ``asyncio.to_thread`` so every external call is a suspension point. Only
    dispatch fans out; all other stages run strictly in sequence.
    """

    def __init__(
        self,
        *,
        object_store: ObjectStore,
        lookups: ReportingLookups,
        repository: ConversionRepository,
        sink: EventSink,
        default_bucket: str,
        traffic_source: str = "facebook",
        max_events: int = MAX_EVENTS,
        subscription_filtering: bool = True,
        now_fn: Callable[[], float] = time.time,
        metrics: MetricsCollector | None = None,
    ):
        self._object_store = object_store
        self._lookups = lookups
        self._repository = repository
        self._dispatcher = Dispatcher(sink, lookups, max_events=max_events)
        self._default_bucket = default_bucket
        self._traffic_source = traffic_source
        self._subscription_filtering = subscription_filtering
        self._now_fn = now_fn
        self.metrics = metrics or MetricsCollector("ConversionReporter")

    async def process_message(self, raw_message: QueueMessage | str | bytes | dict[str, Any]) -> ReportStats:
        """Process every object referenced by one queue message."""
        stats = ReportStats()
        body = raw_message.body if isinstance(raw_message, QueueMessage) else raw_message
        log = logger.bind(
            message_id=raw_message.message_id if isinstance(raw_message, QueueMessage) else None
        )

        try:
            with self.metrics.timer("processMessage"):
                refs = extract_object_refs(body)
                stats.objects = len(refs)
                for ref in refs:
                    await self._process_object(ref, stats)
        except MessageFormatError as e:
            stats.state = MessageState.FAILED
            stats.error = str(e)
            self.metrics.increment("failedMessages")
            log.error("Malformed message, leaving it on the queue", error=str(e))
            raise
        except Exception as e:
            stats.state = MessageState.FAILED
            stats.error = str(e)
            self.metrics.increment("failedMessages")
            log.exception("Message processing failed")
            raise

        stats.state = MessageState.PERSISTED
        self.metrics.increment("processedMessages")
        log.info("Message processed", **{k: v for k, v in stats.as_dict().items() if k != "error"})
        return stats

    async def _process_object(self, ref: ObjectRef, stats: ReportStats) -> None:
        source = parse_source_key(ref.key)
        bucket = ref.bucket or self._default_bucket
        log = logger.bind(
            key=ref.key, source=source.source, account=source.account_name, received_at=source.received_at
        )

        # Fetched
        raw = await asyncio.to_thread(self._object_store.read, bucket, ref.key)
        records = [_with_network(record, source.source) for record in parse_records(raw)]
        stats.received += len(records)
        stats.state = MessageState.FETCHED
        log.info("Conversions fetched", count=len(records))

        # SubscriptionFiltered
        if self._subscription_filtering:
            subscribed_ids = await asyncio.to_thread(self._lookups.list_subscribed_campaign_ids)
            records = filter_subscribed(records, subscribed_ids)
            log.info("Subscription filter applied", subscribed_campaigns=len(subscribed_ids), kept=len(records))
        else:
            log.warning("Subscription filtering disabled, keeping all records", kept=len(records))
        stats.subscribed += len(records)
        stats.state = MessageState.SUBSCRIPTION_FILTERED

        # DedupFiltered
        new, skipped = await asyncio.to_thread(split_new, records, self._repository.exists)
        stats.new += len(new)
        stats.duplicates += len(skipped)
        stats.state = MessageState.DEDUP_FILTERED
        log.info("New conversions", new=len(new), duplicates=len(skipped))
        if not new:
            return

        # Classified
        active_pixels = await asyncio.to_thread(self._lookups.list_active_pixel_ids, self._traffic_source)
        classified = classify_records(new, active_pixels, now_fn=self._now_fn)
        valid = [record for record in classified if record.valid]
        invalid = [record for record in classified if not record.valid]
        stats.valid += len(valid)
        stats.invalid += len(invalid)
        for record in invalid:
            reason = record.invalid_reason or "unknown"
            stats.invalid_reasons[reason] = stats.invalid_reasons.get(reason, 0) + 1
        stats.state = MessageState.CLASSIFIED
        log.info("Conversions classified", valid=len(valid), invalid=len(invalid))

        # Expanded/Batched -> Dispatched -> Reconciled
        result = DispatchResult()
        if valid:
            expanded = [expand_record(record) for record in valid]
            stats.events += sum(len(item.events) for item in expanded)
            stats.state = MessageState.EXPANDED
            with self.metrics.timer("dispatch"):
                result = await self._dispatcher.dispatch(expanded)
            stats.state = MessageState.DISPATCHED
        stats.batches += result.batches_sent
        stats.batches_failed += result.batches_failed
        stats.reported += len(result.successes)
        stats.failed += len(result.failures)
        stats.state = MessageState.RECONCILED

        # Persisted
        unreported = [apply_landings(record).model_copy(update={"reported": 0}) for record in invalid]
        to_persist = [*result.successes, *result.failures, *unreported]
        with self.metrics.timer("persist"):
            stats.persisted += await asyncio.to_thread(self._repository.upsert_many, to_persist)
        stats.state = MessageState.PERSISTED
        self.metrics.increment("reportedConversions", len(result.successes))
        self.metrics.increment("failedConversions", len(result.failures))
        self.metrics.increment("invalidConversions", len(invalid))


def _with_network(record: ConversionRecord, source: str | None) -> ConversionRecord:
    if record.network or not source:
        return record
    return record.model_copy(update={"network": source})
