from pydantic import Field, AliasChoices
from datetime import datetime
from typing import Any, Optional

from crm_api.schemas.base import CamelModel
from crm_api.schemas.customer import CustomerResponse


class SegmentCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    rules: dict[str, Any]


class SegmentUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    rules: Optional[dict[str, Any]] = None


class SegmentResponse(CamelModel):
    id: int
    name: str
    rules: dict[str, Any] = Field(validation_alias=AliasChoices("rules", "rules_json"))
    customer_count: int
    last_populated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    warning: Optional[str] = None


class SegmentPreviewRequest(CamelModel):
    rules: dict[str, Any]


class SegmentPreviewResponse(CamelModel):
    count: int
    scanned: int
    sample: list[CustomerResponse]


class SegmentCustomersResponse(CamelModel):
    segment_id: int
    items: list[CustomerResponse]
    total: int
    limit: Optional[int] = None
    offset: int
    has_more: bool
