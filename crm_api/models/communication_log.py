import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey

from crm_api.database import Base
from crm_api.utils.time import utcnow


class DeliveryStatus(str, enum.Enum):
    """Lifecycle shared by CommunicationLog and SentMessage."""

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SENT, DeliveryStatus.FAILED)


OPEN_STATUSES = (DeliveryStatus.PENDING.value, DeliveryStatus.QUEUED.value)


class CommunicationLog(Base):
    """One row per (campaign, customer) delivery attempt."""

    __tablename__ = "communication_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    campaign_id = Column(Integer, index=True)
    customer_id = Column(Integer, index=True)
    status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)
    message = Column(Text)
    vendor_message_id = Column(String(255), index=True)
    error_message = Column(Text)
    sent_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
