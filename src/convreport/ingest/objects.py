"""Object store reads of raw conversion batches."""

from __future__ import annotations

import json
from typing import Any

import structlog

from convreport.errors import MessageFormatError

logger = structlog.get_logger()


def decode_batch(raw_bytes: bytes, *, key: str = "") -> list[Any]:
    """Decode a stored batch into a list of raw record dicts.

    Producers write either a JSON array of records or that array wrapped in a
    one-element outer array; both decode to the inner list.
    """
    try:
        data = json.loads(raw_bytes.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MessageFormatError(f"Object {key!r} is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise MessageFormatError(f"Object {key!r} must contain a JSON array")
    if len(data) == 1 and isinstance(data[0], list):
        data = data[0]
    return data


class S3ObjectStore:
    """Reads JSON batches from S3. Owns one boto3 client for the process lifetime."""

    def __init__(self, client: Any = None, *, region_name: str | None = None):
        if client is None:
            import boto3

            client = boto3.client("s3", region_name=region_name)
        self._client = client

    def read(self, bucket: str, key: str) -> list[Any]:
        logger.info("Reading batch from object store", bucket=bucket, key=key)
        response = self._client.get_object(Bucket=bucket, Key=key)
        body = response["Body"]
        try:
            raw_bytes = body.read()
        finally:
            body.close()
        return decode_batch(raw_bytes, key=key)
