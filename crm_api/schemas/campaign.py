from pydantic import Field
from datetime import datetime
from typing import Optional

from crm_api.models.campaign import CampaignStatus
from crm_api.schemas.base import CamelModel


class PersonalizationContext(CamelModel):
    discount: Optional[str] = None
    store_name: Optional[str] = None
    coupon_code: Optional[str] = None

    def to_context(self) -> dict:
        """Keys as understood by the message personalizer."""
        return {
            "discount": self.discount,
            "storeName": self.store_name,
            "couponCode": self.coupon_code,
        }


class CampaignCreate(CamelModel):
    segment_id: int
    message: str = Field(..., min_length=1)
    subject: Optional[str] = Field(None, max_length=500)
    personalization_context: Optional[PersonalizationContext] = None


class CampaignUpdate(CamelModel):
    message: Optional[str] = Field(None, min_length=1)
    subject: Optional[str] = Field(None, max_length=500)
    status: Optional[CampaignStatus] = None


class CampaignResponse(CamelModel):
    id: int
    segment_id: int
    message: str
    subject: str
    status: CampaignStatus
    created_at: datetime
    updated_at: Optional[datetime] = None


class CustomerDeliveryLog(CamelModel):
    customer_id: int
    email: str
    message_id: str
    status: str
    error: Optional[str] = None


class CampaignDeliveryResponse(CamelModel):
    campaign_id: int
    status: CampaignStatus
    total_customers: int
    queued: int
    sent: int
    failed: int
    per_customer_logs: list[CustomerDeliveryLog]


class CommunicationLogResponse(CamelModel):
    id: int
    campaign_id: Optional[int] = None
    customer_id: Optional[int] = None
    status: str
    message: Optional[str] = None
    vendor_message_id: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
