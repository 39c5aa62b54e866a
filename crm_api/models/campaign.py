import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey

from crm_api.database import Base
from crm_api.utils.time import utcnow


class CampaignStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


DEFAULT_SUBJECT = "Campaign Email"


class Campaign(Base):
    """One message template sent to one segment's customers."""

    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # No FK: deleting a segment keeps its campaign history
    segment_id = Column(Integer, nullable=False, index=True)
    message = Column(Text, nullable=False)
    subject = Column(String(500), nullable=False, default=DEFAULT_SUBJECT)
    status = Column(String(20), nullable=False, default=CampaignStatus.DRAFT.value)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
