"""
Campaign statistics.

Counts come from CommunicationLog (one row per delivery attempt).
Rates are percentages of ``total`` rounded to 2 decimals and are 0 for
an empty campaign.
"""

import logging
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.exceptions import NotFoundError
from crm_api.models.campaign import Campaign
from crm_api.models.communication_log import CommunicationLog
from crm_api.models.sent_message import SentMessage

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 10


def percentage(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(part / total * 100, 2)


def compute_rates(counts: dict) -> dict:
    """
    Success/failure/delivery rates for a status count dict.

    ``successRate + failureRate`` never exceeds 100 and equals it exactly
    once nothing is pending or queued.
    """
    total = counts["total"]
    success_rate = percentage(counts["sent"], total)
    remainder = round(100 - success_rate, 2) if total else 0.0
    if total and counts["pending"] == 0 and counts["queued"] == 0:
        failure_rate = remainder
    else:
        failure_rate = min(percentage(counts["failed"], total), remainder)
    return {
        "deliveryRate": percentage(counts["sent"] + counts["failed"], total),
        "successRate": success_rate,
        "failureRate": failure_rate,
    }


def _empty_counts() -> dict:
    return {"total": 0, "sent": 0, "failed": 0, "pending": 0, "queued": 0}


def _add(counts: dict, status: str, count: int) -> None:
    counts["total"] += count
    key = status.lower()
    if key in counts:
        counts[key] += count


async def _log_counts(db: AsyncSession, owner_id: int, campaign_ids: Optional[list[int]] = None) -> dict[int, dict]:
    query = (
        select(CommunicationLog.campaign_id, CommunicationLog.status, func.count(CommunicationLog.id))
        .where(CommunicationLog.user_id == owner_id, CommunicationLog.campaign_id.is_not(None))
        .group_by(CommunicationLog.campaign_id, CommunicationLog.status)
    )
    if campaign_ids is not None:
        query = query.where(CommunicationLog.campaign_id.in_(campaign_ids))

    per_campaign: dict[int, dict] = {}
    result = await db.execute(query)
    for campaign_id, status, count in result.all():
        _add(per_campaign.setdefault(campaign_id, _empty_counts()), status, count)
    return per_campaign


async def get_campaign(db: AsyncSession, owner_id: int, campaign_id: int) -> Campaign:
    result = await db.execute(
        select(Campaign).where(Campaign.id == campaign_id, Campaign.user_id == owner_id)
    )
    campaign = result.scalar_one_or_none()
    if campaign is None:
        raise NotFoundError("Campaign", campaign_id)
    return campaign


async def get_campaign_stats(db: AsyncSession, owner_id: int, campaign_id: int) -> dict:
    """Counts, rates and the most recent log entries for one campaign."""
    campaign = await get_campaign(db, owner_id, campaign_id)
    counts = (await _log_counts(db, owner_id, [campaign_id])).get(campaign_id, _empty_counts())

    recent = await db.execute(
        select(CommunicationLog)
        .where(CommunicationLog.campaign_id == campaign_id, CommunicationLog.user_id == owner_id)
        .order_by(CommunicationLog.updated_at.desc(), CommunicationLog.id.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
    )

    return {
        "campaignId": campaign.id,
        "status": campaign.status,
        **counts,
        **compute_rates(counts),
        "recentActivity": [
            {
                "id": log.id,
                "customerId": log.customer_id,
                "status": log.status,
                "messageId": log.vendor_message_id,
                "errorMessage": log.error_message,
                "sentAt": log.sent_at,
                "updatedAt": log.updated_at,
            }
            for log in recent.scalars().all()
        ],
    }


async def get_campaigns_summary(
    db: AsyncSession,
    owner_id: int,
    campaign_ids: Optional[list[int]] = None,
) -> dict:
    """Totals across the given campaigns, or all of the owner's campaigns."""
    query = select(Campaign.id).where(Campaign.user_id == owner_id)
    if campaign_ids is not None:
        query = query.where(Campaign.id.in_(campaign_ids))
    ids = list((await db.execute(query)).scalars().all())

    totals = _empty_counts()
    for counts in (await _log_counts(db, owner_id, ids)).values():
        for key in totals:
            totals[key] += counts[key]

    return {"totalCampaigns": len(ids), **totals, **compute_rates(totals)}


async def get_all_campaign_stats(db: AsyncSession, owner_id: int) -> list[dict]:
    """Every campaign of the owner, newest first, with its own rates."""
    result = await db.execute(
        select(Campaign).where(Campaign.user_id == owner_id).order_by(Campaign.created_at.desc(), Campaign.id.desc())
    )
    campaigns = list(result.scalars().all())
    per_campaign = await _log_counts(db, owner_id, [c.id for c in campaigns])

    stats = []
    for campaign in campaigns:
        counts = per_campaign.get(campaign.id, _empty_counts())
        stats.append({
            "campaignId": campaign.id,
            "segmentId": campaign.segment_id,
            "subject": campaign.subject,
            "status": campaign.status,
            "createdAt": campaign.created_at,
            **counts,
            **compute_rates(counts),
        })
    return stats


async def get_delivery_stats(db: AsyncSession, owner_id: int, campaign_id: Optional[int] = None) -> dict:
    """Sent-message counts by status, optionally for one campaign."""
    query = (
        select(SentMessage.status, func.count(SentMessage.id))
        .where(SentMessage.user_id == owner_id)
        .group_by(SentMessage.status)
    )
    if campaign_id is not None:
        query = query.where(SentMessage.campaign_id == campaign_id)

    counts = _empty_counts()
    for status, count in (await db.execute(query)).all():
        _add(counts, status, count)
    return {**counts, **compute_rates(counts)}

