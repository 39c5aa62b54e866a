from fastapi import APIRouter, status, Query
from sqlalchemy import select
from typing import Optional

from crm_api.api.deps import DbSession, CurrentUser
from crm_api.exceptions import NotFoundError
from crm_api.models.customer import Customer
from crm_api.models.order import Order
from crm_api.schemas.order import OrderCreate, OrderUpdate, OrderResponse
from crm_api.utils.time import utcnow

router = APIRouter()


async def _resolve_customer(db, owner_id: int, data: OrderCreate) -> Customer:
    """Find the order's customer by id, then email, then name."""
    base = select(Customer).where(Customer.user_id == owner_id).order_by(Customer.id).limit(1)
    if data.customer_id is not None:
        query = base.where(Customer.id == data.customer_id)
        reference = data.customer_id
    elif data.customer_email:
        query = base.where(Customer.email == data.customer_email)
        reference = data.customer_email
    else:
        query = base.where(Customer.name == data.customer_name)
        reference = data.customer_name

    customer = (await db.execute(query)).scalar_one_or_none()
    if customer is None:
        raise NotFoundError("Customer", reference)
    return customer


async def _get_owned_order(db, owner_id: int, order_id: int) -> Order:
    result = await db.execute(select(Order).where(Order.id == order_id, Order.user_id == owner_id))
    order = result.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order", order_id)
    return order


@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    db: DbSession,
    current_user: CurrentUser,
    customer_id: Optional[int] = Query(None, alias="customerId"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """List orders, newest first."""
    query = select(Order).where(Order.user_id == current_user.id)
    if customer_id is not None:
        query = query.where(Order.customer_id == customer_id)
    query = query.order_by(Order.date.desc(), Order.id.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: int, db: DbSession, current_user: CurrentUser):
    return await _get_owned_order(db, current_user.id, order_id)


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(order_data: OrderCreate, db: DbSession, current_user: CurrentUser):
    """Record an order. Customer spend is only changed by recalculation."""
    customer = await _resolve_customer(db, current_user.id, order_data)
    order = Order(
        user_id=current_user.id,
        customer_id=customer.id,
        amount=order_data.amount,
        items=[item.model_dump() for item in order_data.items],
        date=order_data.date or utcnow(),
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)
    return order


@router.patch("/{order_id}", response_model=OrderResponse)
async def update_order(order_id: int, order_data: OrderUpdate, db: DbSession, current_user: CurrentUser):
    order = await _get_owned_order(db, current_user.id, order_id)

    for field, value in order_data.model_dump(exclude_unset=True).items():
        setattr(order, field, value)

    await db.commit()
    await db.refresh(order)
    return order


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_order(order_id: int, db: DbSession, current_user: CurrentUser):
    order = await _get_owned_order(db, current_user.id, order_id)
    await db.delete(order)
    await db.commit()
