from sqlalchemy import Column, Integer, DateTime, Float, ForeignKey, JSON
from sqlalchemy.orm import relationship

from crm_api.database import Base
from crm_api.utils.time import utcnow


class Order(Base):
    """Order placed by a customer. Source of truth for recalculated spend."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    # [{"sku": str, "name": str, "qty": int, "price": float}, ...]
    items = Column(JSON, nullable=False, default=list)
    date = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    customer = relationship("Customer", back_populates="orders")
