"""Pytest fixtures for conversion reporting tests."""

from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy import create_engine

from convreport.db import Database
from convreport.errors import DispatchError
from convreport.models import (
    AdAccount,
    Pixel,
    PixelAdAccount,
    ReportingSubscription,
    UserAccount,
    UserAdAccountMap,
)
from convreport.ports import QueueMessage
from convreport.records import ConversionRecord
from convreport.store.conversions import ConversionStore
from convreport.store.lookups import SqlLookups

# Fixed clock for every test: 2023-11-14T22:13:20Z
NOW = 1_700_000_000
ONE_HOUR_AGO = NOW - 3600
EIGHT_DAYS_AGO = NOW - 8 * 24 * 3600


@pytest.fixture
def db(tmp_path) -> Generator[Database, None, None]:
    """File-backed SQLite database; worker threads each get their own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'convreport.db'}",
        connect_args={"check_same_thread": False},
    )
    database = Database(engine=engine)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def store(db: Database) -> ConversionStore:
    return ConversionStore(db)


@pytest.fixture
def lookups(db: Database) -> SqlLookups:
    """Lookups over a seeded credential graph.

    - px-1 (facebook, active) -> ad account A -> user "alice" (token-1)
    - px-2 (facebook, active) -> ad account B -> user "bob" (token-2)
    - px-3 (facebook, inactive)
    - px-4 (facebook, active) with no fetching user account
    - px-tt (tiktok, active)
    - campaigns cmp-1 and cmp-2 subscribed, cmp-9 unsubscribed
    """
    with db.session() as session:
        pixels = {
            code: Pixel(code=code, traffic_source=source, active=active)
            for code, source, active in [
                ("px-1", "facebook", True),
                ("px-2", "facebook", True),
                ("px-3", "facebook", False),
                ("px-4", "facebook", True),
                ("px-tt", "tiktok", True),
            ]
        }
        session.add_all(pixels.values())

        account_a = AdAccount(name="Account A", provider_id="act_1")
        account_b = AdAccount(name="Account B", provider_id="act_2")
        account_c = AdAccount(name="Account C", provider_id="act_3")
        alice = UserAccount(name="alice", token="token-1", fetching=True)
        bob = UserAccount(name="bob", token="token-2", fetching=True)
        revoked = UserAccount(name="carol", token="token-revoked", fetching=False)
        session.add_all([account_a, account_b, account_c, alice, bob, revoked])
        session.flush()

        session.add_all(
            [
                PixelAdAccount(pixel_id=pixels["px-1"].id, ad_account_id=account_a.id),
                PixelAdAccount(pixel_id=pixels["px-2"].id, ad_account_id=account_b.id),
                PixelAdAccount(pixel_id=pixels["px-4"].id, ad_account_id=account_c.id),
                UserAdAccountMap(ua_id=alice.id, aa_id=account_a.id),
                UserAdAccountMap(ua_id=bob.id, aa_id=account_b.id),
                UserAdAccountMap(ua_id=revoked.id, aa_id=account_c.id),
                ReportingSubscription(campaign_id="cmp-1", active=True),
                ReportingSubscription(campaign_id="cmp-2", active=True),
                ReportingSubscription(campaign_id="cmp-9", active=False),
            ]
        )
    return SqlLookups(db)


def record_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "session_id": "sess-1",
        "keyword_clicked": "cheap flights",
        "pixel_id": "px-1",
        "click_timestamp": ONE_HOUR_AGO,
        "ts_click_id": "fbclid-abc",
        "country_code": "US",
        "region": "NewYork",
        "city": "New York",
        "ip": "203.0.113.7",
        "user_agent": "Mozilla/5.0",
        "conversions": 1,
        "revenue": "1.50",
        "lander_visitors": 0,
        "lander_searches": 0,
        "network": "tonic",
        "campaign_id": "cmp-1",
        "vertical": "travel",
        "category": "flights",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_record():
    """Factory for valid tonic records; keyword arguments override fields."""

    def _make(**overrides: Any) -> ConversionRecord:
        return ConversionRecord.model_validate(record_data(**overrides))

    return _make


@pytest.fixture
def make_raw():
    """Factory for raw record dicts as stored in the object store."""
    return record_data


class FakeObjectStore:
    """Object store serving canned record lists by (bucket, key)."""

    def __init__(self, objects: dict[tuple[str, str], list[Any]] | None = None):
        self.objects = objects or {}
        self.reads: list[tuple[str, str]] = []

    def read(self, bucket: str, key: str) -> list[Any]:
        self.reads.append((bucket, key))
        return self.objects[(bucket, key)]


class FakeSink:
    """Conversions API stand-in that records every call."""

    def __init__(self, fail_pixels: set[str] | None = None):
        self.fail_pixels = fail_pixels or set()
        self.calls: list[tuple[str, str, list]] = []

    async def post_events(self, pixel_id: str, token: str, events) -> dict[str, Any]:
        self.calls.append((pixel_id, token, list(events)))
        if pixel_id in self.fail_pixels:
            raise DispatchError(f"Conversions API returned HTTP 500 for pixel {pixel_id}", status_code=500)
        return {"events_received": len(events)}

    @property
    def events_sent(self) -> int:
        return sum(len(events) for _, _, events in self.calls)


class FakeQueue:
    """In-memory queue; messages stay until deleted."""

    def __init__(self, messages: list[QueueMessage] | None = None):
        self.messages = list(messages or [])
        self.deleted: list[str] = []
        self.receives = 0

    def receive(self) -> list[QueueMessage]:
        self.receives += 1
        return [m for m in self.messages if m.receipt_handle not in self.deleted]

    def delete(self, receipt_handle: str) -> None:
        self.deleted.append(receipt_handle)


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


def s3_message(*keys: str, bucket: str = "reports") -> dict[str, Any]:
    """Queue notification body pointing at ``keys``."""
    return {"Records": [{"s3": {"bucket": {"name": bucket}, "object": {"key": key}}} for key in keys]}
