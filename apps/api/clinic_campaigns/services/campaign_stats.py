"""Stats aggregator - atomic per-campaign counters."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from clinic_campaigns.db.enums import CampaignSendStatus, CampaignStat
from clinic_campaigns.db.models import Campaign, CampaignSend
from clinic_campaigns.db.types import utcnow

logger = logging.getLogger(__name__)

STAT_COLUMNS = {
    CampaignStat.RECIPIENTS: Campaign.total_recipients,
    CampaignStat.SENT: Campaign.total_sent,
    CampaignStat.DELIVERED: Campaign.total_delivered,
    CampaignStat.FAILED: Campaign.total_failed,
}


class CampaignStats:
    """Counters are only ever changed with an in-database add."""

    def increment(
        self,
        db: Session,
        campaign_id: UUID,
        stat: CampaignStat,
        amount: int = 1,
    ) -> None:
        if amount <= 0:
            return
        column = STAT_COLUMNS[stat]
        db.execute(
            update(Campaign)
            .where(Campaign.id == campaign_id)
            .values({column: column + amount})
            .execution_options(synchronize_session=False)
        )
        db.commit()

    def record_delivery(
        self,
        db: Session,
        message_id: str,
        delivered_at: datetime | None = None,
    ) -> bool:
        """
        Mark the sent action carrying ``message_id`` as delivered.

        The delivered counter moves at most once per action.
        """
        send = (
            db.query(CampaignSend)
            .filter(
                CampaignSend.message_id == message_id,
                CampaignSend.status == CampaignSendStatus.SENT.value,
            )
            .first()
        )
        if not send:
            logger.info("Delivery receipt for unknown message %s", message_id)
            return False

        result = db.execute(
            update(CampaignSend)
            .where(CampaignSend.id == send.id, CampaignSend.delivered_at.is_(None))
            .values(delivered_at=delivered_at or utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            return False

        self.increment(db, send.campaign_id, CampaignStat.DELIVERED)
        return True
