from pydantic import EmailStr, Field, model_validator
from datetime import datetime
from typing import Optional

from crm_api.schemas.base import CamelModel


class OrderItem(CamelModel):
    sku: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    qty: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class OrderCreate(CamelModel):
    """New order. The customer is referenced by id, email or name (first match wins)."""
    customer_id: Optional[int] = None
    customer_email: Optional[EmailStr] = None
    customer_name: Optional[str] = None
    amount: float = Field(..., ge=0)
    items: list[OrderItem] = Field(default_factory=list)
    date: Optional[datetime] = None

    @model_validator(mode="after")
    def require_customer_reference(self) -> "OrderCreate":
        if self.customer_id is None and not self.customer_email and not self.customer_name:
            raise ValueError("One of customerId, customerEmail or customerName is required")
        return self


class OrderUpdate(CamelModel):
    amount: Optional[float] = Field(None, ge=0)
    items: Optional[list[OrderItem]] = None
    date: Optional[datetime] = None


class OrderResponse(CamelModel):
    id: int
    customer_id: int
    amount: float
    items: list[OrderItem]
    date: datetime
