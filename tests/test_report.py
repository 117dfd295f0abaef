"""End-to-end tests for the reporting pipeline on SQLite with fake queue, object store and API."""

import asyncio
import json

import pytest
from conftest import EIGHT_DAYS_AGO, NOW, FakeObjectStore, FakeSink, s3_message

from convreport.errors import MessageFormatError
from convreport.jobs.report import ConversionReporter, MessageState
from convreport.metrics import MetricsCollector
from convreport.ports import QueueMessage
from convreport.validity import CONVERSION_TOO_OLD, INVALID_PIXEL, MISSING_CLICK_ID

BUCKET = "reports"
KEY = "reports/tonic/conversions/acme-media/2024-05-01/13/1714568400000.json"


@pytest.fixture
def build_reporter(lookups, store):
    def _build(object_store, sink, **kwargs):
        kwargs.setdefault("default_bucket", BUCKET)
        return ConversionReporter(
            object_store=object_store,
            lookups=lookups,
            repository=store,
            sink=sink,
            now_fn=lambda: NOW,
            **kwargs,
        )

    return _build


@pytest.fixture
def mixed_batch(make_raw):
    return [
        make_raw(session_id="a", pixel_id="px-1"),
        make_raw(session_id="b", pixel_id="px-2", conversions=2, revenue="3.00"),
        make_raw(session_id="c", ts_click_id=""),
        make_raw(session_id="d", campaign_id="cmp-9"),
        make_raw(session_id="e", click_timestamp=EIGHT_DAYS_AGO),
        make_raw(session_id="f", pixel_id="px-3"),
    ]


class TestProcessMessage:
    """Tests for ConversionReporter.process_message()."""

    def test_full_pipeline(self, build_reporter, store, sink, mixed_batch):
        reporter = build_reporter(FakeObjectStore({(BUCKET, KEY): mixed_batch}), sink)

        stats = asyncio.run(reporter.process_message(json.dumps(s3_message(KEY))))

        assert stats.state == MessageState.PERSISTED
        assert stats.objects == 1
        assert stats.received == 6
        assert stats.subscribed == 5
        assert stats.new == 5
        assert stats.valid == 2
        assert stats.invalid == 3
        assert stats.invalid_reasons == {MISSING_CLICK_ID: 1, CONVERSION_TOO_OLD: 1, INVALID_PIXEL: 1}
        assert stats.reported == 2
        assert stats.failed == 0
        assert stats.persisted == 5
        assert stats.events == 3 + 4
        assert sink.events_sent == 7
        assert {(pixel, token) for pixel, token, _ in sink.calls} == {("px-1", "token-1"), ("px-2", "token-2")}

        assert store.count() == 5
        assert store.find_by_key("d", "cheap flights") is None
        assert store.find_by_key("a", "cheap flights").reported == 1
        assert store.find_by_key("b", "cheap flights").reported == 1

    def test_missing_click_id_is_persisted_unreported(self, build_reporter, store, sink, make_raw):
        reporter = build_reporter(FakeObjectStore({(BUCKET, KEY): [make_raw(session_id="c", ts_click_id="")]}), sink)

        asyncio.run(reporter.process_message(s3_message(KEY)))

        stored = store.find_by_key("c", "cheap flights")
        assert stored.valid is False
        assert stored.invalid_reason == MISSING_CLICK_ID
        assert stored.reported == 0
        assert stored.landings == 1
        assert stored.serp_landings == 1
        assert sink.calls == []

    def test_rerun_skips_reported_and_invalid_records(self, build_reporter, store, mixed_batch):
        """Reported and invalid rows are final; only the unsubscribed record was never stored."""
        object_store = FakeObjectStore({(BUCKET, KEY): mixed_batch})
        first_sink, second_sink = FakeSink(), FakeSink()

        asyncio.run(build_reporter(object_store, first_sink).process_message(s3_message(KEY)))
        stats = asyncio.run(build_reporter(object_store, second_sink).process_message(s3_message(KEY)))

        assert stats.duplicates == 5
        assert stats.new == 0
        assert second_sink.calls == []
        assert store.count() == 5

    def test_failed_dispatch_is_retried_on_next_message(self, build_reporter, store, make_raw):
        """A valid record left unreported is dispatched again and its row is updated."""
        object_store = FakeObjectStore(
            {(BUCKET, KEY): [make_raw(session_id="a", pixel_id="px-1"), make_raw(session_id="b", pixel_id="px-2")]}
        )
        retry_sink = FakeSink()

        asyncio.run(build_reporter(object_store, FakeSink(fail_pixels={"px-1"})).process_message(s3_message(KEY)))
        assert store.find_by_key("a", "cheap flights").reported == 0

        stats = asyncio.run(build_reporter(object_store, retry_sink).process_message(s3_message(KEY)))

        assert stats.new == 1
        assert stats.duplicates == 1
        assert stats.reported == 1
        assert [pixel for pixel, _, _ in retry_sink.calls] == ["px-1"]
        assert store.count() == 2
        assert store.find_by_key("a", "cheap flights").reported == 1
        assert store.find_by_key("b", "cheap flights").reported == 1

    def test_concurrent_rerun_updates_instead_of_duplicating(self, lookups, store, make_raw):
        """When the dedup check misses a racing write, the upsert still keeps one row per key."""

        class RacyRepository:
            def exists(self, session_id, keyword_clicked):
                return False

            def find_by_key(self, session_id, keyword_clicked):
                return store.find_by_key(session_id, keyword_clicked)

            def upsert_many(self, records):
                return store.upsert_many(records)

        object_store = FakeObjectStore({(BUCKET, KEY): [make_raw(session_id="a")]})
        failing = ConversionReporter(
            object_store=object_store,
            lookups=lookups,
            repository=RacyRepository(),
            sink=FakeSink(fail_pixels={"px-1"}),
            default_bucket=BUCKET,
            now_fn=lambda: NOW,
        )
        succeeding = ConversionReporter(
            object_store=object_store,
            lookups=lookups,
            repository=RacyRepository(),
            sink=FakeSink(),
            default_bucket=BUCKET,
            now_fn=lambda: NOW,
        )

        asyncio.run(failing.process_message(s3_message(KEY)))
        assert store.find_by_key("a", "cheap flights").reported == 0

        asyncio.run(succeeding.process_message(s3_message(KEY)))
        assert store.count() == 1
        assert store.find_by_key("a", "cheap flights").reported == 1

    def test_pixel_failure_does_not_block_other_pixel(self, build_reporter, store, make_raw):
        batch = [make_raw(session_id="a", pixel_id="px-1"), make_raw(session_id="b", pixel_id="px-2")]
        reporter = build_reporter(FakeObjectStore({(BUCKET, KEY): batch}), FakeSink(fail_pixels={"px-1"}))

        stats = asyncio.run(reporter.process_message(s3_message(KEY)))

        assert stats.state == MessageState.PERSISTED
        assert stats.reported == 1
        assert stats.failed == 1
        assert stats.batches_failed == 1
        assert store.find_by_key("a", "cheap flights").reported == 0
        assert store.find_by_key("b", "cheap flights").reported == 1

    def test_pixel_without_token_persists_unreported(self, build_reporter, store, sink, make_raw):
        reporter = build_reporter(FakeObjectStore({(BUCKET, KEY): [make_raw(session_id="a", pixel_id="px-4")]}), sink)

        stats = asyncio.run(reporter.process_message(s3_message(KEY)))

        assert stats.failed == 1
        assert sink.calls == []
        stored = store.find_by_key("a", "cheap flights")
        assert stored.valid is True
        assert stored.reported == 0

    def test_network_falls_back_to_key_source(self, build_reporter, store, sink, make_raw):
        key = "reports/crossroads/conversions/acme/2024-05-01/13/1.json"
        raw = make_raw(session_id="a", network=None, lander_visitors=2, lander_searches=1, conversions=0)
        reporter = build_reporter(FakeObjectStore({(BUCKET, key): [raw]}), sink)

        asyncio.run(reporter.process_message(s3_message(key)))

        stored = store.find_by_key("a", "cheap flights")
        assert stored.network == "crossroads"
        assert (stored.landings, stored.serp_landings) == (2, 1)
        assert sink.events_sent == 3

    def test_subscription_filtering_disabled(self, build_reporter, store, sink, make_raw):
        object_store = FakeObjectStore({(BUCKET, KEY): [make_raw(session_id="d", campaign_id="cmp-9")]})
        reporter = build_reporter(object_store, sink, subscription_filtering=False)

        stats = asyncio.run(reporter.process_message(s3_message(KEY)))

        assert stats.subscribed == 1
        assert store.exists("d", "cheap flights")

    def test_multiple_objects(self, build_reporter, store, sink, make_raw):
        other_key = "reports/sedo/conversions/acme/2024-05-01/14/2.json"
        object_store = FakeObjectStore(
            {
                (BUCKET, KEY): [make_raw(session_id="a")],
                (BUCKET, other_key): [make_raw(session_id="b", network=None)],
            }
        )
        reporter = build_reporter(object_store, sink)

        stats = asyncio.run(reporter.process_message(s3_message(KEY, other_key)))

        assert stats.objects == 2
        assert stats.reported == 2
        assert object_store.reads == [(BUCKET, KEY), (BUCKET, other_key)]
        assert store.find_by_key("b", "cheap flights").network == "sedo"

    def test_bucket_falls_back_to_default(self, build_reporter, sink, make_raw):
        object_store = FakeObjectStore({("fallback", KEY): [make_raw()]})
        reporter = build_reporter(object_store, sink, default_bucket="fallback")

        asyncio.run(reporter.process_message({"Records": [{"s3": {"object": {"key": KEY}}}]}))

        assert object_store.reads == [("fallback", KEY)]

    def test_accepts_queue_message(self, build_reporter, sink, make_raw):
        reporter = build_reporter(FakeObjectStore({(BUCKET, KEY): [make_raw()]}), sink)
        message = QueueMessage(message_id="m-1", receipt_handle="rh-1", body=json.dumps(s3_message(KEY)))

        stats = asyncio.run(reporter.process_message(message))

        assert stats.reported == 1

    def test_empty_object(self, build_reporter, store, sink):
        reporter = build_reporter(FakeObjectStore({(BUCKET, KEY): []}), sink)

        stats = asyncio.run(reporter.process_message(s3_message(KEY)))

        assert stats.state == MessageState.PERSISTED
        assert stats.received == 0
        assert store.count() == 0

    def test_malformed_message_raises(self, build_reporter, store, sink):
        reporter = build_reporter(FakeObjectStore(), sink)

        with pytest.raises(MessageFormatError):
            asyncio.run(reporter.process_message("{not json"))

        assert reporter.metrics.counters["failedMessages"] == 1
        assert store.count() == 0

    def test_malformed_record_raises(self, build_reporter, store, sink, make_raw):
        raw = make_raw()
        del raw["session_id"]
        reporter = build_reporter(FakeObjectStore({(BUCKET, KEY): [raw]}), sink)

        with pytest.raises(MessageFormatError):
            asyncio.run(reporter.process_message(s3_message(KEY)))

        assert sink.calls == []
        assert store.count() == 0

    def test_object_store_errors_propagate(self, build_reporter, sink):
        class BrokenObjectStore:
            def read(self, bucket, key):
                raise ConnectionError("object store unavailable")

        reporter = build_reporter(BrokenObjectStore(), sink)

        with pytest.raises(ConnectionError):
            asyncio.run(reporter.process_message(s3_message(KEY)))

    def test_metrics(self, build_reporter, sink, mixed_batch):
        ticks = iter(range(100))
        metrics = MetricsCollector("test", clock=lambda: float(next(ticks)))
        reporter = build_reporter(FakeObjectStore({(BUCKET, KEY): mixed_batch}), sink, metrics=metrics)

        asyncio.run(reporter.process_message(s3_message(KEY)))

        assert metrics.summary() == {
            "processedMessages": 1,
            "reportedConversions": 2,
            "failedConversions": 0,
            "invalidConversions": 3,
        }
        assert set(metrics.timings_ms) == {"processMessage", "dispatch", "persist"}
