from pydantic import Field
from datetime import datetime
from typing import Literal, Optional

from crm_api.schemas.base import CamelModel


class DeliveryReceiptRequest(CamelModel):
    """Vendor webhook payload reporting a terminal delivery status."""
    message_id: str = Field(..., min_length=1)
    status: Literal["SENT", "FAILED"]
    delivered_at: datetime
    error_message: Optional[str] = None


class DeliveryReceiptResponse(CamelModel):
    message_id: str
    status: str
    applied: bool


class VendorSendRequest(CamelModel):
    customer_id: int
    message: str = Field(..., min_length=1)
    subject: Optional[str] = Field(None, max_length=500)
    message_id: Optional[str] = None


class VendorSendResponse(CamelModel):
    accepted: bool
    vendor_message_id: str
    status: str
    error_message: Optional[str] = None


class SentMessageResponse(CamelModel):
    id: int
    recipient_email: str
    recipient_name: Optional[str] = None
    subject: str
    text_content: str
    status: str
    message_id: str
    error_message: Optional[str] = None
    campaign_id: Optional[int] = None
    discount_info: Optional[dict] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
