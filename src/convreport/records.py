"""Conversion record contract shared by every pipeline stage."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from convreport.errors import MessageFormatError


class Network(str, Enum):
    """Upstream network that produced a conversion record."""

    TONIC = "tonic"
    SEDO = "sedo"
    CROSSROADS = "crossroads"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> Network:
        if not value:
            return cls.OTHER
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OTHER


class ConversionRecord(BaseModel):
    """One ad-click-to-conversion outcome reported by an upstream network.

    Pipeline stages never mutate a record in place. Each stage returns a
    derived copy via ``model_copy(update=...)``.
    """

    model_config = ConfigDict(extra="allow")

    # Identity: (session_id, keyword_clicked)
    session_id: str
    keyword_clicked: str

    pixel_id: str | None = None
    click_timestamp: Any = None  # Epoch seconds, validated by the freshness rule
    ts_click_id: str | None = None

    country_code: str = ""
    region: str = ""
    city: str = ""
    ip: str | None = None
    user_agent: str | None = None

    conversions: int = 0
    revenue: Decimal = Decimal("0")
    lander_visitors: int = 0
    lander_searches: int = 0

    network: str | None = None
    campaign_id: str | None = None
    vertical: str | None = None
    category: str | None = None

    # Derived by the pipeline
    valid: bool | None = None
    invalid_reason: str | None = None
    reported: int = 0
    landings: int | None = None
    serp_landings: int | None = None

    @field_validator("session_id", "keyword_clicked", "pixel_id", "ts_click_id", "campaign_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("country_code", "region", "city", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("conversions", "lander_visitors", "lander_searches", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    @field_validator("revenue", mode="before")
    @classmethod
    def _coerce_revenue(cls, value: Any) -> Any:
        if value in (None, ""):
            return Decimal("0")
        if isinstance(value, float):
            return Decimal(str(value))
        return value

    @property
    def key(self) -> tuple[str, str]:
        return (self.session_id, self.keyword_clicked)

    @property
    def network_type(self) -> Network:
        return Network.parse(self.network)

    def click_timestamp_seconds(self) -> int | None:
        """Return the click timestamp as integer epoch seconds, or None when malformed."""
        return coerce_epoch_seconds(self.click_timestamp)

    def to_document(self) -> dict[str, Any]:
        """Full JSON-safe representation, extra upstream fields included."""
        return self.model_dump(mode="json")


def coerce_epoch_seconds(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except ArithmeticError:
            return None
        if not number.is_finite() or number != number.to_integral_value():
            return None
        return int(number)
    return None


def parse_records(raw: Any) -> list[ConversionRecord]:
    """Validate a decoded JSON array of upstream records."""
    if not isinstance(raw, list):
        raise MessageFormatError(f"Expected a JSON array of records, got {type(raw).__name__}")

    records: list[ConversionRecord] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise MessageFormatError(f"Record {index} is not an object")
        try:
            records.append(ConversionRecord.model_validate(item))
        except ValidationError as e:
            raise MessageFormatError(f"Record {index} is malformed: {e}") from e
    return records
