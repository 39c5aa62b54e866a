from crm_api.models.user import User
from crm_api.models.customer import Customer
from crm_api.models.order import Order
from crm_api.models.segment import Segment
from crm_api.models.campaign import Campaign, CampaignStatus
from crm_api.models.communication_log import CommunicationLog, DeliveryStatus
from crm_api.models.sent_message import SentMessage

__all__ = [
    "User",
    "Customer",
    "Order",
    "Segment",
    "Campaign",
    "CampaignStatus",
    "CommunicationLog",
    "DeliveryStatus",
    "SentMessage",
]
