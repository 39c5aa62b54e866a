from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey
from sqlalchemy.orm import relationship

from crm_api.database import Base
from crm_api.utils.time import utcnow


class Customer(Base):
    """Customer model.

    ``spend`` is maintained by ingestion and by the spend recalculation
    job, which sums the customer's orders.
    """

    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    # Not unique: two owners may import the same person
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(50))
    spend = Column(Float, nullable=False, default=0.0)
    visits = Column(Integer, nullable=False, default=0)
    last_active = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    orders = relationship("Order", back_populates="customer", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Customer {self.id} {self.email}>"
