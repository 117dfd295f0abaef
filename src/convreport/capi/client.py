"""HTTP client for the conversions API."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from convreport.capi.events import OutboundEvent
from convreport.errors import DispatchError

logger = structlog.get_logger()


class ConversionsApiClient:
    """
    Thin async wrapper around ``POST /{pixel_id}/events``.

    One instance owns one ``httpx.AsyncClient``. Open it once per process and
    close it on shutdown:

        async with ConversionsApiClient(base_url, api_version) as client:
            await client.post_events(pixel_id, token, events)
    """

    def __init__(
        self,
        base_url: str,
        api_version: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version.strip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/{self.api_version}" if self.api_version else self.base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 10.0)),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> ConversionsApiClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post_events(self, pixel_id: str, token: str, events: Sequence[OutboundEvent]) -> dict[str, Any]:
        """Send one batch. Raises :class:`DispatchError` on any failure."""
        logger.info("Sending events to conversions API", pixel_id=pixel_id, events=len(events))
        payload = {
            "data": [event.to_payload() for event in events],
            "access_token": token,
        }

        try:
            response = await self._client.post(f"/{pixel_id}/events", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            raise DispatchError(
                f"Conversions API returned HTTP {status_code} for pixel {pixel_id}: {e.response.text[:500]}",
                status_code=status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise DispatchError(f"Conversions API timed out for pixel {pixel_id}") from e
        except httpx.RequestError as e:
            raise DispatchError(f"Conversions API request failed for pixel {pixel_id}: {e}") from e

        try:
            return response.json()
        except ValueError:
            return {}
