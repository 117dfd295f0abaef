"""Narrow a batch to campaigns subscribed to conversion reporting."""

from __future__ import annotations

from collections.abc import Collection, Iterable

from convreport.records import ConversionRecord


def filter_subscribed(
    records: Iterable[ConversionRecord], subscribed_campaign_ids: Collection[str]
) -> list[ConversionRecord]:
    """Keep records whose campaign is subscribed. An empty subscription set keeps nothing."""
    subscribed = frozenset(subscribed_campaign_ids)
    if not subscribed:
        return []
    return [record for record in records if record.campaign_id is not None and record.campaign_id in subscribed]
