from fastapi import APIRouter
from crm_api.api.v2 import (
    customers,
    orders,
    segments,
    campaigns,
    delivery,
    ai,
)

api_router = APIRouter()

# Include all v2 routers
api_router.include_router(customers.router, prefix="/customers", tags=["customers"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(segments.router, prefix="/segments", tags=["segments"])
api_router.include_router(campaigns.router, prefix="/campaigns", tags=["campaigns"])
api_router.include_router(delivery.router, prefix="/delivery", tags=["delivery"])
api_router.include_router(ai.router, prefix="/ai", tags=["ai"])
