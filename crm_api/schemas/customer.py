from pydantic import EmailStr, Field
from datetime import datetime
from typing import Optional

from crm_api.schemas.base import CamelModel


class CustomerBase(CamelModel):
    """Base customer schema."""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    spend: float = Field(0, ge=0)
    visits: int = Field(0, ge=0)
    last_active: Optional[datetime] = None


class CustomerCreate(CustomerBase):
    """Schema for creating a customer."""
    pass


class CustomerBulkCreate(CamelModel):
    """Several customers ingested in one request."""
    customers: list[CustomerCreate] = Field(..., min_length=1, max_length=1000)


class CustomerUpdate(CamelModel):
    """Schema for updating a customer (all fields optional)."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    spend: Optional[float] = Field(None, ge=0)
    visits: Optional[int] = Field(None, ge=0)
    last_active: Optional[datetime] = None


class CustomerResponse(CustomerBase):
    """Schema for customer response."""
    id: int
    email: str
    created_at: datetime


class CustomerListResponse(CamelModel):
    """Paginated customer list response."""
    items: list[CustomerResponse]
    total: int
    page: int
    page_size: int


class SpendRecalculationResponse(CamelModel):
    updated: int
    spend_by_customer: dict[int, float]
