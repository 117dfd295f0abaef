"""Dispatch of planned batches and reconciliation of their outcomes."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import structlog

from convreport.capi.batching import MAX_EVENTS, Batch, group_by_pixel, plan_batches
from convreport.capi.events import ExpandedRecord
from convreport.errors import CredentialNotFoundError
from convreport.ports import EventSink, ReportingLookups
from convreport.records import ConversionRecord

logger = structlog.get_logger()


@dataclass(frozen=True)
class BatchOutcome:
    """Result of sending one batch. The API gives no per-event outcome."""

    pixel_id: str
    batch_index: int
    record_keys: frozenset[tuple[str, str]]
    events: int
    success: bool
    error: str | None = None


@dataclass
class DispatchResult:
    successes: list[ConversionRecord] = field(default_factory=list)
    failures: list[ConversionRecord] = field(default_factory=list)
    outcomes: list[BatchOutcome] = field(default_factory=list)

    @property
    def batches_sent(self) -> int:
        return len(self.outcomes)

    @property
    def batches_failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)


def reconcile(expanded: Iterable[ExpandedRecord], outcomes: Iterable[BatchOutcome]) -> DispatchResult:
    """Map batch outcomes back onto records.

    A record fails if any batch carrying one of its events failed. Records that
    produced no events had nothing to send and count as successes. The result
    depends only on each record's own batches, never on completion order.
    """
    outcomes = list(outcomes)
    failed_keys: set[tuple[str, str]] = set()
    for outcome in outcomes:
        if not outcome.success:
            failed_keys.update(outcome.record_keys)

    result = DispatchResult(outcomes=outcomes)
    for item in expanded:
        record = item.record
        if record.key in failed_keys:
            result.failures.append(record.model_copy(update={"reported": 0}))
        else:
            result.successes.append(record.model_copy(update={"reported": 1}))
    return result


class Dispatcher:
    """
    Sends expanded records to the conversions API, one concurrent task per batch.

    Token lookups go through ``lookups.get_token``. A pixel without a token
    fails only its own records. Each batch is isolated: an error on one never
    stops the others. Nothing is retried here; retries happen when the queue
    redelivers the message.
    """

    def __init__(self, sink: EventSink, lookups: ReportingLookups, *, max_events: int = MAX_EVENTS):
        self._sink = sink
        self._lookups = lookups
        self._max_events = max_events

    async def dispatch(self, expanded: Sequence[ExpandedRecord]) -> DispatchResult:
        grouped = group_by_pixel(expanded)
        logger.info("Dispatching to pixels", pixels=len(grouped), records=len(expanded))

        # Every pixel settles before an unexpected lookup error propagates,
        # so no send outlives the message that started it.
        per_pixel = await asyncio.gather(
            *(self._dispatch_pixel(pixel_id, items) for pixel_id, items in grouped.items()),
            return_exceptions=True,
        )
        errors = [result for result in per_pixel if isinstance(result, BaseException)]
        if errors:
            logger.error("Dispatch aborted after all pixels settled", errors=len(errors), error=str(errors[0]))
            raise errors[0]
        outcomes = [outcome for pixel_outcomes in per_pixel for outcome in pixel_outcomes]
        return reconcile(expanded, outcomes)

    async def _dispatch_pixel(self, pixel_id: str, items: list[ExpandedRecord]) -> list[BatchOutcome]:
        batches = plan_batches(pixel_id, items, self._max_events)
        if not batches:
            return []

        try:
            token = await asyncio.to_thread(self._lookups.get_token, pixel_id)
        except CredentialNotFoundError as e:
            logger.error("No token for pixel, failing its batches", pixel_id=pixel_id, error=str(e))
            return [self._outcome(batch, index, success=False, error=str(e)) for index, batch in enumerate(batches)]

        logger.info("Pixel batches planned", pixel_id=pixel_id, batches=len(batches))
        return list(
            await asyncio.gather(*(self._send_batch(batch, index, token) for index, batch in enumerate(batches)))
        )

    async def _send_batch(self, batch: Batch, index: int, token: str) -> BatchOutcome:
        try:
            await self._sink.post_events(batch.pixel_id, token, batch.events)
        except Exception as e:
            logger.error(
                "Batch dispatch failed",
                pixel_id=batch.pixel_id,
                batch_index=index,
                events=batch.total_payloads,
                records=len(batch.records),
                error=str(e),
            )
            return self._outcome(batch, index, success=False, error=str(e))

        logger.info("Batch dispatched", pixel_id=batch.pixel_id, batch_index=index, events=batch.total_payloads)
        return self._outcome(batch, index, success=True)

    @staticmethod
    def _outcome(batch: Batch, index: int, *, success: bool, error: str | None = None) -> BatchOutcome:
        return BatchOutcome(
            pixel_id=batch.pixel_id,
            batch_index=index,
            record_keys=frozenset(record.key for record in batch.records),
            events=batch.total_payloads,
            success=success,
            error=error,
        )
