"""
Delivery endpoints.

The receipt webhook is what the messaging vendor calls back with a
terminal status. Receipts are idempotent per message id: a repeat for a
message that is already SENT/FAILED is acknowledged with
``applied=false`` and changes nothing.
"""

from fastapi import APIRouter, Query
from sqlalchemy import select
from typing import Optional
import logging
import time

from crm_api.api.deps import DbSession, CurrentUser, Recorder, Simulator, Queue
from crm_api.exceptions import ConflictError, NotFoundError
from crm_api.models.communication_log import CommunicationLog, DeliveryStatus
from crm_api.models.customer import Customer
from crm_api.models.sent_message import SentMessage
from crm_api.schemas.delivery import (
    DeliveryReceiptRequest,
    DeliveryReceiptResponse,
    VendorSendRequest,
    VendorSendResponse,
    SentMessageResponse,
)
from crm_api.services.campaign_stats import get_delivery_stats
from crm_api.services.delivery_outcomes import DeliveryOutcomeRecorded, RecordResult
from crm_api.services.vendor_simulator import VendorMessage

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_FAILURE_REASON = "Delivery failed"
DIRECT_SUBJECT = "Message from CRM"


@router.post("/receipts", response_model=DeliveryReceiptResponse)
async def delivery_receipt(receipt: DeliveryReceiptRequest, db: DbSession, recorder: Recorder):
    """Vendor webhook reporting the final status of one message."""
    error_message = receipt.error_message
    if receipt.status == DeliveryStatus.FAILED.value and not error_message:
        error_message = DEFAULT_FAILURE_REASON

    outcome = DeliveryOutcomeRecorded(
        message_id=receipt.message_id,
        status=receipt.status,
        occurred_at=receipt.delivered_at,
        error_message=error_message,
    )
    result = await recorder.apply(db, outcome)
    if result is RecordResult.UNKNOWN:
        await db.rollback()
        raise NotFoundError("Message", receipt.message_id)
    await db.commit()

    if result is RecordResult.ALREADY_TERMINAL:
        logger.info(f"Ignoring repeat receipt for {receipt.message_id}")

    return DeliveryReceiptResponse(
        message_id=receipt.message_id,
        status=receipt.status,
        applied=result is RecordResult.APPLIED,
    )


@router.post("/send", response_model=VendorSendResponse)
async def send_message(
    payload: VendorSendRequest,
    db: DbSession,
    current_user: CurrentUser,
    simulator: Simulator,
):
    """Send one message to one customer through the vendor, outside any campaign."""
    result = await db.execute(
        select(Customer).where(Customer.id == payload.customer_id, Customer.user_id == current_user.id)
    )
    customer = result.scalar_one_or_none()
    if customer is None:
        raise NotFoundError("Customer", payload.customer_id)

    message_id = payload.message_id or f"direct_{customer.id}_{int(time.time() * 1000)}"
    existing = await db.execute(select(SentMessage.id).where(SentMessage.message_id == message_id))
    if existing.first() is not None:
        raise ConflictError(f"Message id {message_id!r} is already in use")
    subject = payload.subject or DIRECT_SUBJECT
    db.add_all([
        CommunicationLog(
            user_id=current_user.id,
            customer_id=customer.id,
            status=DeliveryStatus.PENDING.value,
            message=payload.message,
            vendor_message_id=message_id,
        ),
        SentMessage(
            user_id=current_user.id,
            recipient_email=customer.email,
            recipient_name=customer.name,
            subject=subject,
            text_content=payload.message,
            status=DeliveryStatus.PENDING.value,
            message_id=message_id,
        ),
    ])
    await db.commit()

    response = await simulator.send(VendorMessage(
        message_id=message_id,
        recipient_email=customer.email,
        recipient_name=customer.name,
        message=payload.message,
        subject=subject,
    ))
    return response.to_dict()


@router.get("/messages", response_model=list[SentMessageResponse])
async def list_sent_messages(
    db: DbSession,
    current_user: CurrentUser,
    status: Optional[str] = None,
    campaign_id: Optional[int] = Query(None, alias="campaignId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Sent message history, newest first."""
    query = select(SentMessage).where(SentMessage.user_id == current_user.id)
    if status:
        query = query.where(SentMessage.status == status.upper())
    if campaign_id is not None:
        query = query.where(SentMessage.campaign_id == campaign_id)
    query = query.order_by(SentMessage.created_at.desc(), SentMessage.id.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/stats")
async def delivery_stats(
    db: DbSession,
    current_user: CurrentUser,
    campaign_id: Optional[int] = Query(None, alias="campaignId"),
):
    """Sent message counts by status with derived rates."""
    return await get_delivery_stats(db, current_user.id, campaign_id)


@router.get("/queue/stats")
async def queue_stats(current_user: CurrentUser, queue: Queue):
    stats = await queue.get_stats(current_user.id)
    return {
        **stats,
        "isProcessing": queue.is_processing,
        "running": queue.running,
    }


@router.get("/status")
async def vendor_status(current_user: CurrentUser, simulator: Simulator):
    return simulator.get_status()


@router.post("/flush")
async def flush_receipts(current_user: CurrentUser, simulator: Simulator):
    """Apply every pending delivery receipt now."""
    flushed = await simulator.flush()
    return {"flushed": flushed}
