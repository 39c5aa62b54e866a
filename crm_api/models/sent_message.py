from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, JSON

from crm_api.database import Base
from crm_api.models.communication_log import DeliveryStatus
from crm_api.utils.time import utcnow


class SentMessage(Base):
    """Every outbound message attempt, campaign or individual.

    System of record for delivery statistics. Shares its lifecycle with
    CommunicationLog through ``message_id``.
    """

    __tablename__ = "sent_messages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    recipient_email = Column(String(255), nullable=False)
    recipient_name = Column(String(255))
    subject = Column(String(500), nullable=False)
    text_content = Column(Text, nullable=False)
    html_content = Column(Text)
    status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)
    message_id = Column(String(255), nullable=False, unique=True, index=True)
    error_message = Column(Text)
    campaign_id = Column(Integer, index=True)
    discount_info = Column(JSON)
    personalization_data = Column(JSON)
    sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
