from sqlalchemy import Column, Integer, String, Boolean, DateTime

from crm_api.database import Base
from crm_api.utils.time import utcnow


class User(Base):
    """Account owning customers, segments and campaigns.

    ``id`` is the owner identifier every other table is scoped by.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<User {self.email}>"
