"""Parsing of queue notifications that point at conversion batches."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

from convreport.errors import MessageFormatError


@dataclass(frozen=True)
class SourceInfo:
    """Parsed object key: ``module_group/source/job_key/account_name/date/hour/filename``."""

    key: str
    module_group: str | None = None
    source: str | None = None
    job_key: str | None = None
    account_name: str | None = None
    date: str | None = None
    hour: str | None = None
    filename: str | None = None

    @property
    def received_at(self) -> str | None:
        if not self.filename:
            return None
        return self.filename.split(".")[0]


def parse_source_key(key: str) -> SourceInfo:
    parts = key.split("/")
    fields = ("module_group", "source", "job_key", "account_name", "date", "hour", "filename")
    values: dict[str, Any] = {name: (parts[i] or None) if i < len(parts) else None for i, name in enumerate(fields)}
    # Filenames never contain "/", so anything deeper belongs to the filename slot.
    if len(parts) > len(fields):
        values["filename"] = parts[-1] or None
    return SourceInfo(key=key, **values)


@dataclass(frozen=True)
class ObjectRef:
    bucket: str | None
    key: str


def extract_object_refs(body: str | bytes | dict[str, Any]) -> list[ObjectRef]:
    """Return the percent-decoded object references carried by a queue message body."""
    if isinstance(body, dict):
        payload = body
    else:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise MessageFormatError(f"Message body is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MessageFormatError("Message body must be a JSON object")

    records = payload.get("Records")
    if not isinstance(records, list) or not records:
        raise MessageFormatError("Message body has no Records")

    refs: list[ObjectRef] = []
    for index, record in enumerate(records):
        try:
            s3 = record["s3"]
            encoded = s3["object"]["key"]
        except (KeyError, TypeError) as e:
            raise MessageFormatError(f"Record {index} has no s3.object.key") from e
        if not isinstance(encoded, str) or not encoded:
            raise MessageFormatError(f"Record {index} has an empty object key")
        bucket = s3.get("bucket", {}).get("name") if isinstance(s3.get("bucket"), dict) else None
        refs.append(ObjectRef(bucket=bucket or None, key=unquote(encoded)))
    return refs
