from fastapi import APIRouter, status, Query
from sqlalchemy import select, func, or_
from typing import Optional

from crm_api.api.deps import DbSession, CurrentUser
from crm_api.exceptions import NotFoundError
from crm_api.models.customer import Customer
from crm_api.schemas.customer import (
    CustomerCreate,
    CustomerBulkCreate,
    CustomerUpdate,
    CustomerResponse,
    CustomerListResponse,
    SpendRecalculationResponse,
)
from crm_api.services.customer_spend import update_customer_spend, update_all_customers_spend

router = APIRouter()


async def _get_owned_customer(db, owner_id: int, customer_id: int) -> Customer:
    result = await db.execute(
        select(Customer).where(Customer.id == customer_id, Customer.user_id == owner_id)
    )
    customer = result.scalar_one_or_none()
    if not customer:
        raise NotFoundError("Customer", customer_id)
    return customer


@router.get("/", response_model=CustomerListResponse)
async def list_customers(
    db: DbSession,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=500),
    search: Optional[str] = None,
):
    """List customers with pagination and filtering."""
    query = select(Customer).where(Customer.user_id == current_user.id)

    if search:
        query = query.where(
            or_(
                Customer.name.ilike(f"%{search}%"),
                Customer.email.ilike(f"%{search}%"),
                Customer.phone.ilike(f"%{search}%"),
            )
        )

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    offset = (page - 1) * page_size
    query = query.order_by(Customer.created_at.desc(), Customer.id.desc()).offset(offset).limit(page_size)
    result = await db.execute(query)

    return CustomerListResponse(
        items=result.scalars().all(),
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{customer_id}", response_model=CustomerResponse)
async def get_customer(customer_id: int, db: DbSession, current_user: CurrentUser):
    """Get a single customer by ID."""
    return await _get_owned_customer(db, current_user.id, customer_id)


@router.post("/", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(customer_data: CustomerCreate, db: DbSession, current_user: CurrentUser):
    """Create a new customer."""
    customer = Customer(user_id=current_user.id, **customer_data.model_dump())
    db.add(customer)
    await db.commit()
    await db.refresh(customer)
    return customer


@router.post("/bulk", response_model=list[CustomerResponse], status_code=status.HTTP_201_CREATED)
async def bulk_create_customers(payload: CustomerBulkCreate, db: DbSession, current_user: CurrentUser):
    """Ingest several customers in one transaction."""
    customers = [Customer(user_id=current_user.id, **c.model_dump()) for c in payload.customers]
    db.add_all(customers)
    await db.commit()
    for customer in customers:
        await db.refresh(customer)
    return customers


@router.patch("/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: int,
    customer_data: CustomerUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Update a customer."""
    customer = await _get_owned_customer(db, current_user.id, customer_id)

    # Update only provided fields
    for field, value in customer_data.model_dump(exclude_unset=True).items():
        setattr(customer, field, value)

    await db.commit()
    await db.refresh(customer)
    return customer


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(customer_id: int, db: DbSession, current_user: CurrentUser):
    """Delete a customer and their orders."""
    customer = await _get_owned_customer(db, current_user.id, customer_id)
    await db.delete(customer)
    await db.commit()


@router.post("/{customer_id}/recalculate-spend", response_model=CustomerResponse)
async def recalculate_customer_spend(customer_id: int, db: DbSession, current_user: CurrentUser):
    """Set the customer's spend to the sum of their orders."""
    return await update_customer_spend(db, current_user.id, customer_id)


@router.post("/recalculate-spend", response_model=SpendRecalculationResponse)
async def recalculate_all_spend(db: DbSession, current_user: CurrentUser):
    """Recalculate spend for every customer."""
    spend = await update_all_customers_spend(db, current_user.id)
    return SpendRecalculationResponse(updated=len(spend), spend_by_customer=spend)
