"""
Campaign Delivery Service

Creates a campaign for a segment and hands one personalized message per
matching customer to the vendor, either through the queue drain loop
(default) or straight to the delivery simulator.

A failure while handling one customer is recorded as a FAILED delivery
for that customer and the loop moves on. Anything that breaks the loop
itself cancels the campaign and surfaces as FatalBatchError.
"""

import asyncio
import html
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.config import settings
from crm_api.exceptions import FatalBatchError, TemplateValidationError, ValidationError, ErrorCode
from crm_api.models.campaign import Campaign, CampaignStatus, DEFAULT_SUBJECT
from crm_api.models.communication_log import CommunicationLog, DeliveryStatus
from crm_api.models.sent_message import SentMessage
from crm_api.services.delivery_outcomes import DeliveryOutcomeRecorded, DeliveryOutcomeRecorder, RecordResult
from crm_api.services.message_personalization import (
    DEFAULT_FALLBACK_NAME,
    get_available_placeholders,
    personalize_message,
    render,
    validate_template,
)
from crm_api.services.segment_population import SegmentPopulationService
from crm_api.services.segment_rules import UnrecognizedRuleError
from crm_api.services.vendor_simulator import DeliverySimulator, VendorMessage
from crm_api.tasks.queue_drain import QueueDrainLoop, QueueMessage

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = {
    "discount": "10",
    "storeName": "Your Store",
    "couponCode": "WELCOME10",
}

PERSONALIZATION_FIELDS = {
    "customerName": True,
    "customerEmail": True,
    "customFields": ["phone", "spend", "visits"],
}


@dataclass
class CampaignDeliveryResult:
    campaign_id: int
    status: str
    total_customers: int = 0
    queued: int = 0
    sent: int = 0
    failed: int = 0
    per_customer_logs: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "campaignId": self.campaign_id,
            "status": self.status,
            "totalCustomers": self.total_customers,
            "queued": self.queued,
            "sent": self.sent,
            "failed": self.failed,
            "perCustomerLogs": self.per_customer_logs,
        }


def build_message_id(campaign_id: int, customer_id: int) -> str:
    return f"campaign_{campaign_id}_{customer_id}_{int(time.time() * 1000)}"


def build_html(subject: str, text: str, store_name: str) -> str:
    """Email body wrapping the personalized text and a signature block."""
    body = html.escape(text).replace("\n", "<br>")
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #333;">{html.escape(subject)}</h2>'
        f'<div style="line-height: 1.6; color: #555;">{body}</div>'
        '<div style="margin-top: 20px; padding: 15px; background-color: #f8f9fa; border-radius: 5px;">'
        '<p style="margin: 0; font-size: 14px; color: #666;">'
        f"Best regards,<br>{html.escape(store_name or 'Your Store')}"
        "</p></div></div>"
    )


@dataclass
class Recipient:
    """Plain copy of a customer so per-customer rollbacks never touch ORM state."""

    id: int
    name: str
    email: str
    phone: Optional[str] = None
    spend: float = 0
    visits: int = 0
    last_active: Optional[datetime] = None

    @classmethod
    def from_customer(cls, customer) -> "Recipient":
        return cls(
            id=customer.id,
            name=customer.name,
            email=customer.email,
            phone=customer.phone,
            spend=customer.spend,
            visits=customer.visits,
            last_active=customer.last_active,
        )


class CampaignDeliveryService:
    """Orchestrates audience resolution, personalization and hand-off."""

    def __init__(
        self,
        simulator: DeliverySimulator,
        queue: QueueDrainLoop,
        recorder: DeliveryOutcomeRecorder,
        *,
        mode: str = "queue",
        send_delay: float = 0.0,
    ):
        if mode not in ("queue", "direct"):
            raise ValueError(f"Unknown delivery mode: {mode}")
        self.simulator = simulator
        self.queue = queue
        self.recorder = recorder
        self.mode = mode
        self.send_delay = send_delay

    @classmethod
    def from_settings(
        cls,
        simulator: DeliverySimulator,
        queue: QueueDrainLoop,
        recorder: DeliveryOutcomeRecorder,
    ) -> "CampaignDeliveryService":
        return cls(
            simulator,
            queue,
            recorder,
            mode=settings.CAMPAIGN_DELIVERY_MODE,
            send_delay=settings.CAMPAIGN_SEND_DELAY_SECONDS,
        )

    async def create_and_deliver(
        self,
        db: AsyncSession,
        owner_id: int,
        segment_id: int,
        template: str,
        subject: Optional[str] = None,
        personalization_context: Optional[dict] = None,
        strict: Optional[bool] = None,
    ) -> CampaignDeliveryResult:
        """
        Create a campaign and submit one message per matching customer.

        Raises:
            TemplateValidationError: unknown placeholders, nothing persisted
            NotFoundError: segment missing or owned by someone else
            ValidationError: segment rules rejected by strict evaluation
            FatalBatchError: the delivery loop itself failed
        """
        validation = validate_template(template)
        if not validation.is_valid:
            raise TemplateValidationError(validation.invalid_placeholders, get_available_placeholders())

        subject = subject or DEFAULT_SUBJECT
        context = dict(DEFAULT_CONTEXT)
        context.update({k: str(v) for k, v in (personalization_context or {}).items() if v})

        population = SegmentPopulationService(db, strict=strict)
        segment = await population.get_segment(segment_id, owner_id)
        try:
            customers = await population.resolve_audience(segment)
        except UnrecognizedRuleError as e:
            raise ValidationError(str(e), code=ErrorCode.INVALID_RULES)
        recipients = [Recipient.from_customer(c) for c in customers]

        try:
            campaign = Campaign(
                user_id=owner_id,
                segment_id=segment_id,
                message=template,
                subject=subject,
                status=CampaignStatus.ACTIVE.value,
            )
            db.add(campaign)
            await db.commit()
            campaign_id = campaign.id
        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to create campaign for segment {segment_id}: {e}")
            raise FatalBatchError(f"Failed to create campaign: {e}")

        logger.info(f"Campaign {campaign_id} created for {len(recipients)} customers ({self.mode} delivery)")
        result = CampaignDeliveryResult(
            campaign_id=campaign_id,
            status=CampaignStatus.ACTIVE.value,
            total_customers=len(recipients),
        )

        try:
            for index, recipient in enumerate(recipients):
                if index and self.send_delay:
                    await asyncio.sleep(self.send_delay)
                entry = await self._deliver_one(db, owner_id, campaign_id, template, recipient, subject, context)
                result.per_customer_logs.append(entry)
                if entry["status"] == DeliveryStatus.QUEUED.value:
                    result.queued += 1
                elif entry["status"] == DeliveryStatus.FAILED.value:
                    result.failed += 1
                else:
                    result.sent += 1
        except Exception as e:
            await db.rollback()
            await self._set_status(db, campaign_id, CampaignStatus.CANCELLED)
            logger.error(f"Campaign {campaign_id} cancelled: {e}")
            raise FatalBatchError(f"Campaign delivery aborted: {e}", campaign_id=campaign_id)

        await self._set_status(db, campaign_id, CampaignStatus.COMPLETED)
        result.status = CampaignStatus.COMPLETED.value

        logger.info(
            f"Campaign {campaign_id} processed: {result.queued} queued, "
            f"{result.sent} sent, {result.failed} failed"
        )
        return result

    async def _set_status(self, db: AsyncSession, campaign_id: int, status: CampaignStatus) -> None:
        await db.execute(
            update(Campaign)
            .where(Campaign.id == campaign_id)
            .values(status=status.value)
            .execution_options(synchronize_session="fetch")
        )
        await db.commit()

    async def _deliver_one(
        self,
        db: AsyncSession,
        owner_id: int,
        campaign_id: int,
        template: str,
        recipient: Recipient,
        subject: str,
        context: dict,
    ) -> dict:
        message_id = build_message_id(campaign_id, recipient.id)
        entry: dict[str, Any] = {
            "customerId": recipient.id,
            "email": recipient.email,
            "messageId": message_id,
        }

        try:
            personalized = personalize_message(template, recipient, DEFAULT_FALLBACK_NAME, context)
            text = personalized.personalized_message
            personal_subject = render(subject, personalized.personalization_data)
            discount_info = {
                "discount": context["discount"],
                "storeName": context["storeName"],
                "couponCode": context["couponCode"],
            }
            html_content = build_html(personal_subject, text, context["storeName"])

            if self.mode == "queue":
                await self.queue.enqueue(db, QueueMessage(
                    message_id=message_id,
                    owner_id=owner_id,
                    recipient_email=recipient.email,
                    recipient_name=recipient.name,
                    subject=personal_subject,
                    text_content=text,
                    html_content=html_content,
                    campaign_id=campaign_id,
                    customer_id=recipient.id,
                    discount_info=discount_info,
                    personalization_data=PERSONALIZATION_FIELDS,
                ))
                await db.commit()
                entry["status"] = DeliveryStatus.QUEUED.value
                return entry

            self._add_records(
                db, owner_id, campaign_id, recipient, message_id, personal_subject,
                text, html_content, DeliveryStatus.PENDING, discount_info=discount_info,
            )
            await db.commit()
            response = await self.simulator.send(VendorMessage(
                message_id=message_id,
                recipient_email=recipient.email,
                recipient_name=recipient.name,
                message=text,
                subject=personal_subject,
            ))
            entry["status"] = response.status.value
            if response.error_message:
                entry["error"] = response.error_message
            return entry

        except Exception as e:
            logger.warning(f"Delivery to customer {recipient.id} in campaign {campaign_id} failed: {e}")
            await db.rollback()
            await self._record_failure(db, owner_id, campaign_id, template, recipient, message_id, subject, str(e))
            entry["status"] = DeliveryStatus.FAILED.value
            entry["error"] = str(e)
            return entry

    def _add_records(
        self,
        db: AsyncSession,
        owner_id: int,
        campaign_id: int,
        recipient: Recipient,
        message_id: str,
        subject: str,
        text: str,
        html_content: Optional[str],
        status: DeliveryStatus,
        discount_info: Optional[dict] = None,
        error_message: Optional[str] = None,
    ) -> None:
        db.add(CommunicationLog(
            user_id=owner_id,
            campaign_id=campaign_id,
            customer_id=recipient.id,
            status=status.value,
            message=text,
            vendor_message_id=message_id,
            error_message=error_message,
        ))
        db.add(SentMessage(
            user_id=owner_id,
            recipient_email=recipient.email,
            recipient_name=recipient.name,
            subject=subject,
            text_content=text,
            html_content=html_content,
            status=status.value,
            message_id=message_id,
            campaign_id=campaign_id,
            discount_info=discount_info,
            personalization_data=PERSONALIZATION_FIELDS,
            error_message=error_message,
        ))

    async def _record_failure(
        self,
        db: AsyncSession,
        owner_id: int,
        campaign_id: int,
        template: str,
        recipient: Recipient,
        message_id: str,
        subject: str,
        error_message: str,
    ) -> None:
        """Close the attempt as FAILED, reusing rows that already exist."""
        outcome = DeliveryOutcomeRecorded(
            message_id=message_id,
            status=DeliveryStatus.FAILED,
            error_message=error_message,
        )
        if await self.recorder.apply(db, outcome) is RecordResult.UNKNOWN:
            self._add_records(
                db, owner_id, campaign_id, recipient, message_id, subject,
                template, None, DeliveryStatus.FAILED, error_message=error_message,
            )
        await db.commit()
