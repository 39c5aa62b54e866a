from fastapi import APIRouter

from crm_api.api.deps import DbSession, CurrentUser, AIService
from crm_api.schemas.ai import (
    AIRulesRequest,
    AIRulesResponse,
    AIMessagesRequest,
    AIMessagesResponse,
    AISummaryResponse,
)
from crm_api.services.campaign_stats import get_campaign_stats
from crm_api.services.segment_ai_service import summarize_performance

router = APIRouter()


@router.post("/rules", response_model=AIRulesResponse)
async def natural_language_to_rules(payload: AIRulesRequest, current_user: CurrentUser, ai: AIService):
    """Turn a plain-language audience description into segment rules."""
    parsed = await ai.to_rules(payload.text)
    return parsed.to_dict()


@router.post("/messages", response_model=AIMessagesResponse)
async def suggest_messages(payload: AIMessagesRequest, current_user: CurrentUser, ai: AIService):
    """Three campaign message suggestions for a goal."""
    return AIMessagesResponse(messages=await ai.to_messages(payload.goal))


@router.get("/campaigns/{campaign_id}/summary", response_model=AISummaryResponse)
async def campaign_summary(campaign_id: int, db: DbSession, current_user: CurrentUser):
    stats = await get_campaign_stats(db, current_user.id, campaign_id)
    return AISummaryResponse(campaign_id=campaign_id, summary=summarize_performance(stats))
