"""Durable store of reported conversions, keyed by (session_id, keyword_clicked)."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog
from sqlalchemy import delete, exists, func, or_, select, tuple_
from sqlalchemy.dialects import postgresql, sqlite

from convreport.db import Database
from convreport.models import ReportConversion
from convreport.records import ConversionRecord

logger = structlog.get_logger()

KEY_COLUMNS = ("session_id", "keyword_clicked")
UPSERT_CHUNK_SIZE = 1000  # Keeps bind parameters under the PostgreSQL limit

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def record_to_row(record: ConversionRecord) -> dict[str, Any]:
    seconds = record.click_timestamp_seconds()
    return {
        "session_id": record.session_id,
        "keyword_clicked": record.keyword_clicked,
        "pixel_id": record.pixel_id,
        "campaign_id": record.campaign_id,
        "network": record.network,
        "click_timestamp": seconds,
        "click_timestamp_ms": seconds * 1000 if seconds is not None else None,
        "ts_click_id": record.ts_click_id,
        "country_code": record.country_code,
        "region": record.region,
        "city": record.city,
        "ip": record.ip,
        "user_agent": record.user_agent,
        "conversions": record.conversions,
        "revenue": record.revenue,
        "lander_visitors": record.lander_visitors,
        "lander_searches": record.lander_searches,
        "landings": record.landings,
        "serp_landings": record.serp_landings,
        "valid": bool(record.valid),
        "invalid_reason": record.invalid_reason,
        "reported": record.reported,
        "payload": record.to_document(),
    }


class ConversionStore:
    """
    Persistence for final conversion outcomes.

    ``upsert_many`` is a single ``INSERT ... ON CONFLICT DO UPDATE`` on the
    record key, so two workers racing on the same record produce an extra
    update rather than a duplicate row or a constraint violation.
    """

    def __init__(self, db: Database):
        self._db = db

    def find_by_key(self, session_id: str, keyword_clicked: str) -> ConversionRecord | None:
        with self._db.session() as session:
            row = session.execute(
                select(ReportConversion).where(
                    ReportConversion.session_id == session_id,
                    ReportConversion.keyword_clicked == keyword_clicked,
                )
            ).scalar_one_or_none()
            if row is None:
                return None
            return ConversionRecord.model_validate(row.payload)

    def exists(self, session_id: str, keyword_clicked: str) -> bool:
        """True when the record needs no further work: reported, or stored as invalid.

        Valid rows left at ``reported=0`` by a failed dispatch do not count, so
        the next message carrying them dispatches them again.
        """
        with self._db.session() as session:
            return bool(
                session.scalar(
                    select(
                        exists().where(
                            ReportConversion.session_id == session_id,
                            ReportConversion.keyword_clicked == keyword_clicked,
                            or_(ReportConversion.reported == 1, ReportConversion.valid.is_(False)),
                        )
                    )
                )
            )

    def upsert_many(self, records: Iterable[ConversionRecord]) -> int:
        """Insert or update every record. Later duplicates of a key win."""
        rows_by_key: dict[tuple[str, str], dict[str, Any]] = {}
        for record in records:
            rows_by_key[record.key] = record_to_row(record)
        if not rows_by_key:
            return 0

        dialect = self._db.engine.dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Upsert is not supported for dialect {dialect!r}")

        rows = list(rows_by_key.values())
        with self._db.session() as session:
            for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
                chunk = rows[start : start + UPSERT_CHUNK_SIZE]
                stmt = insert(ReportConversion).values(chunk)
                update_columns = {name: stmt.excluded[name] for name in chunk[0] if name not in KEY_COLUMNS}
                update_columns["updated_at"] = func.now()
                session.execute(stmt.on_conflict_do_update(index_elements=list(KEY_COLUMNS), set_=update_columns))

        logger.info("Conversions persisted", count=len(rows))
        return len(rows)

    def delete_by_keys(self, keys: Iterable[tuple[str, str]]) -> int:
        """Out-of-band cleanup. Never called by steady-state processing."""
        key_list = list(keys)
        if not key_list:
            return 0
        with self._db.session() as session:
            result = session.execute(
                delete(ReportConversion).where(
                    tuple_(ReportConversion.session_id, ReportConversion.keyword_clicked).in_(key_list)
                )
            )
            deleted = result.rowcount or 0
        logger.info("Conversions deleted", requested=len(key_list), deleted=deleted)
        return deleted

    def count(self) -> int:
        with self._db.session() as session:
            return session.scalar(select(func.count()).select_from(ReportConversion)) or 0
