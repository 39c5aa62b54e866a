from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON

from crm_api.database import Base
from crm_api.utils.time import utcnow


class Segment(Base):
    """Saved rule tree plus its materialized customer snapshot.

    ``customer_ids``/``customer_count``/``last_populated_at`` are written
    together by the population service and go stale as customers change.
    """

    __tablename__ = "segments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    rules_json = Column(JSON, nullable=False)
    created_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    customer_ids = Column(JSON, nullable=False, default=list)
    customer_count = Column(Integer, nullable=False, default=0)
    last_populated_at = Column(DateTime(timezone=True))
