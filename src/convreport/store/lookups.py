"""Read-only lookups: subscriptions, active pixels and pixel tokens."""

from __future__ import annotations

import structlog
from sqlalchemy import select

from convreport.db import Database
from convreport.errors import CredentialNotFoundError
from convreport.models import AdAccount, Pixel, PixelAdAccount, ReportingSubscription, UserAccount, UserAdAccountMap

logger = structlog.get_logger()


class SqlLookups:
    """Lookups backed by the relational store. Every call reads fresh; nothing is cached."""

    def __init__(self, db: Database):
        self._db = db

    def list_subscribed_campaign_ids(self) -> set[str]:
        with self._db.session() as session:
            rows = session.scalars(
                select(ReportingSubscription.campaign_id).where(ReportingSubscription.active.is_(True))
            ).all()
        return {str(campaign_id) for campaign_id in rows}

    def list_active_pixel_ids(self, traffic_source: str) -> set[str]:
        with self._db.session() as session:
            rows = session.scalars(
                select(Pixel.code).where(Pixel.traffic_source == traffic_source, Pixel.active.is_(True))
            ).all()
        return {str(code) for code in rows}

    def get_token(self, pixel_id: str) -> str:
        """Token of a fetching user account mapped to the pixel through its ad accounts."""
        stmt = (
            select(UserAccount.token, UserAccount.name)
            .select_from(Pixel)
            .join(PixelAdAccount, PixelAdAccount.pixel_id == Pixel.id)
            .join(AdAccount, AdAccount.id == PixelAdAccount.ad_account_id)
            .join(UserAdAccountMap, UserAdAccountMap.aa_id == AdAccount.id)
            .join(UserAccount, UserAccount.id == UserAdAccountMap.ua_id)
            .where(Pixel.code == pixel_id, UserAccount.fetching.is_(True))
            .order_by(UserAccount.id)
        )
        with self._db.session() as session:
            rows = session.execute(stmt).all()

        if not rows:
            raise CredentialNotFoundError(pixel_id)
        if len({row.token for row in rows}) > 1:
            # A pixel shared across business managers; the oldest account wins.
            logger.warning("Pixel maps to several tokens", pixel_id=pixel_id, accounts=[row.name for row in rows])
        return rows[0].token
