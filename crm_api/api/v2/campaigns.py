from fastapi import APIRouter, status, Query
from sqlalchemy import select, delete
from typing import Optional

from crm_api.api.deps import DbSession, CurrentUser, DeliveryService
from crm_api.models.campaign import Campaign
from crm_api.models.communication_log import CommunicationLog
from crm_api.schemas.campaign import (
    CampaignCreate,
    CampaignUpdate,
    CampaignResponse,
    CampaignDeliveryResponse,
    CommunicationLogResponse,
)
from crm_api.services.campaign_stats import (
    get_campaign,
    get_campaign_stats,
    get_campaigns_summary,
    get_all_campaign_stats,
)

router = APIRouter()


@router.post("/", response_model=CampaignDeliveryResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    campaign_data: CampaignCreate,
    db: DbSession,
    current_user: CurrentUser,
    delivery: DeliveryService,
    strict: Optional[bool] = Query(None),
):
    """Create a campaign for a segment and deliver it to every matching customer."""
    context = campaign_data.personalization_context.to_context() if campaign_data.personalization_context else None
    result = await delivery.create_and_deliver(
        db,
        owner_id=current_user.id,
        segment_id=campaign_data.segment_id,
        template=campaign_data.message,
        subject=campaign_data.subject,
        personalization_context=context,
        strict=strict,
    )
    return result.to_dict()


@router.get("/", response_model=list[CampaignResponse])
async def list_campaigns(
    db: DbSession,
    current_user: CurrentUser,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """List campaigns, newest first."""
    result = await db.execute(
        select(Campaign)
        .where(Campaign.user_id == current_user.id)
        .order_by(Campaign.created_at.desc(), Campaign.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/stats/summary")
async def campaigns_summary(db: DbSession, current_user: CurrentUser):
    """Delivery totals and rates across all campaigns."""
    return await get_campaigns_summary(db, current_user.id)


@router.get("/stats/all")
async def all_campaign_stats(db: DbSession, current_user: CurrentUser):
    """Every campaign with its own delivery rates."""
    return await get_all_campaign_stats(db, current_user.id)


@router.get("/{campaign_id}", response_model=CampaignResponse)
async def get_campaign_detail(campaign_id: int, db: DbSession, current_user: CurrentUser):
    return await get_campaign(db, current_user.id, campaign_id)


@router.patch("/{campaign_id}", response_model=CampaignResponse)
async def update_campaign(
    campaign_id: int,
    campaign_data: CampaignUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Update message, subject or status. Already sent messages are unaffected."""
    campaign = await get_campaign(db, current_user.id, campaign_id)

    for field, value in campaign_data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(campaign, field, value.value if field == "status" else value)

    await db.commit()
    await db.refresh(campaign)
    return campaign


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_campaign(campaign_id: int, db: DbSession, current_user: CurrentUser):
    """Delete a campaign together with its communication logs."""
    campaign = await get_campaign(db, current_user.id, campaign_id)
    await db.execute(
        delete(CommunicationLog).where(
            CommunicationLog.campaign_id == campaign_id,
            CommunicationLog.user_id == current_user.id,
        )
    )
    await db.delete(campaign)
    await db.commit()


@router.get("/{campaign_id}/logs", response_model=list[CommunicationLogResponse])
async def get_campaign_logs(
    campaign_id: int,
    db: DbSession,
    current_user: CurrentUser,
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """Communication log entries for one campaign, newest first."""
    await get_campaign(db, current_user.id, campaign_id)

    query = select(CommunicationLog).where(
        CommunicationLog.campaign_id == campaign_id,
        CommunicationLog.user_id == current_user.id,
    )
    if status_filter:
        query = query.where(CommunicationLog.status == status_filter.upper())
    result = await db.execute(query.order_by(CommunicationLog.created_at.desc(), CommunicationLog.id.desc()))
    return result.scalars().all()


@router.get("/{campaign_id}/stats")
async def campaign_stats(campaign_id: int, db: DbSession, current_user: CurrentUser):
    """Counts, success/failure/delivery rates and recent activity."""
    return await get_campaign_stats(db, current_user.id, campaign_id)
