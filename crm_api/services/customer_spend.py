"""Recalculate customer spend from orders."""

import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.exceptions import NotFoundError
from crm_api.models.customer import Customer
from crm_api.models.order import Order

logger = logging.getLogger(__name__)


async def calculate_customer_spend(db: AsyncSession, owner_id: int, customer_id: int) -> float:
    total = await db.scalar(
        select(func.coalesce(func.sum(Order.amount), 0.0)).where(
            Order.customer_id == customer_id, Order.user_id == owner_id
        )
    )
    return float(total or 0.0)


async def update_customer_spend(db: AsyncSession, owner_id: int, customer_id: int) -> Customer:
    """Set ``spend`` to the sum of the customer's orders and commit."""
    result = await db.execute(
        select(Customer).where(Customer.id == customer_id, Customer.user_id == owner_id)
    )
    customer = result.scalar_one_or_none()
    if customer is None:
        raise NotFoundError("Customer", customer_id)

    customer.spend = await calculate_customer_spend(db, owner_id, customer_id)
    await db.commit()
    await db.refresh(customer)
    return customer


async def update_all_customers_spend(db: AsyncSession, owner_id: int) -> dict[int, float]:
    """Recalculate every customer of the owner in one transaction.

    Returns:
        {customer_id: new_spend}
    """
    totals_result = await db.execute(
        select(Order.customer_id, func.sum(Order.amount))
        .where(Order.user_id == owner_id)
        .group_by(Order.customer_id)
    )
    totals = {customer_id: float(total or 0.0) for customer_id, total in totals_result.all()}

    customers = await db.execute(select(Customer).where(Customer.user_id == owner_id))
    updated = {}
    for customer in customers.scalars().all():
        customer.spend = totals.get(customer.id, 0.0)
        updated[customer.id] = customer.spend
    await db.commit()

    logger.info(f"Recalculated spend for {len(updated)} customers of user {owner_id}")
    return updated
