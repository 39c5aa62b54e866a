from pydantic import Field
from typing import Any

from crm_api.schemas.base import CamelModel


class AIRulesRequest(CamelModel):
    text: str = Field(..., min_length=1, max_length=2000)


class AIRulesResponse(CamelModel):
    name: str
    rules: dict[str, Any]
    source: str


class AIMessagesRequest(CamelModel):
    goal: str = Field(..., min_length=1, max_length=1000)


class AIMessagesResponse(CamelModel):
    messages: list[str]


class AISummaryResponse(CamelModel):
    campaign_id: int
    summary: str
