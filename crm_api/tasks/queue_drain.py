"""Queue Drain Loop - background delivery of QUEUED messages.

A single APScheduler interval job wakes every few seconds, takes the
oldest QUEUED sent message, waits out a fixed processing delay, draws
the vendor outcome and records it on both delivery records.

One message per tick is the intended throughput. A busy flag skips
ticks that fire while the previous drain is still running.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_api.config import settings
from crm_api.models.communication_log import CommunicationLog, DeliveryStatus
from crm_api.models.sent_message import SentMessage
from crm_api.services.delivery_outcomes import DeliveryOutcomeRecorded, DeliveryOutcomeRecorder
from crm_api.services.vendor_simulator import DeliverySimulator
from crm_api.utils.time import utcnow

logger = logging.getLogger(__name__)

DRAIN_JOB_ID = "queue_drain"


@dataclass
class QueueMessage:
    message_id: str
    owner_id: int
    recipient_email: str
    subject: str
    text_content: str
    recipient_name: Optional[str] = None
    html_content: Optional[str] = None
    campaign_id: Optional[int] = None
    customer_id: Optional[int] = None
    discount_info: Optional[dict] = None
    personalization_data: Optional[dict] = None


class QueueDrainLoop:
    """Owns the drain job. Exactly one instance per process."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        simulator: DeliverySimulator,
        recorder: DeliveryOutcomeRecorder,
        scheduler: Optional[AsyncIOScheduler] = None,
        *,
        interval: float = 2.0,
        processing_delay: float = 1.0,
    ):
        self.session_maker = session_maker
        self.simulator = simulator
        self.recorder = recorder
        self.scheduler = scheduler
        self.interval = interval
        self.processing_delay = processing_delay
        self._busy = False
        self._running = False

    @classmethod
    def from_settings(
        cls,
        session_maker: async_sessionmaker,
        simulator: DeliverySimulator,
        recorder: DeliveryOutcomeRecorder,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> "QueueDrainLoop":
        return cls(
            session_maker,
            simulator,
            recorder,
            scheduler,
            interval=settings.QUEUE_DRAIN_INTERVAL_SECONDS,
            processing_delay=settings.QUEUE_PROCESSING_DELAY_SECONDS,
        )

    @property
    def is_processing(self) -> bool:
        return self._busy

    @property
    def running(self) -> bool:
        return self._running

    async def enqueue(self, db: AsyncSession, message: QueueMessage) -> SentMessage:
        """
        Add QUEUED SentMessage and CommunicationLog rows for ``message``.

        The rows are flushed, not committed; the caller owns the transaction.
        """
        sent_message = SentMessage(
            user_id=message.owner_id,
            recipient_email=message.recipient_email,
            recipient_name=message.recipient_name,
            subject=message.subject,
            text_content=message.text_content,
            html_content=message.html_content,
            status=DeliveryStatus.QUEUED.value,
            message_id=message.message_id,
            campaign_id=message.campaign_id,
            discount_info=message.discount_info,
            personalization_data=message.personalization_data,
        )
        log = CommunicationLog(
            user_id=message.owner_id,
            campaign_id=message.campaign_id,
            customer_id=message.customer_id,
            status=DeliveryStatus.QUEUED.value,
            message=message.text_content,
            vendor_message_id=message.message_id,
        )
        db.add_all([sent_message, log])
        await db.flush()
        logger.debug(f"Queued message {message.message_id} for {message.recipient_email}")
        return sent_message

    async def _next_queued(self) -> Optional[SentMessage]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(SentMessage)
                .where(SentMessage.status == DeliveryStatus.QUEUED.value)
                .order_by(SentMessage.created_at.asc(), SentMessage.id.asc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def drain_once(self) -> Optional[DeliveryOutcomeRecorded]:
        """
        Process the oldest QUEUED message, if any.

        Returns the recorded outcome, or None when the queue was empty or
        a drain was already in progress.
        """
        if self._busy:
            return None

        self._busy = True
        try:
            queued = await self._next_queued()
            if queued is None:
                return None

            if self.processing_delay:
                await asyncio.sleep(self.processing_delay)

            status, error_message = self.simulator.decide()
            outcome = DeliveryOutcomeRecorded(
                message_id=queued.message_id,
                status=status,
                occurred_at=utcnow(),
                error_message=error_message,
            )
            await self.recorder.record(outcome)

            if status == DeliveryStatus.SENT:
                logger.info(f"Queue delivered {queued.message_id} to {queued.recipient_email}")
            else:
                logger.warning(
                    f"Queue failed {queued.message_id} to {queued.recipient_email}: {error_message}"
                )
            return outcome
        finally:
            self._busy = False

    async def _tick(self) -> None:
        try:
            await self.drain_once()
        except Exception as e:
            logger.error(f"Queue drain tick failed: {e}")

    async def get_stats(self, owner_id: Optional[int] = None) -> dict[str, int]:
        """Count of sent messages per status, every status present."""
        query = select(SentMessage.status, func.count(SentMessage.id)).group_by(SentMessage.status)
        if owner_id is not None:
            query = query.where(SentMessage.user_id == owner_id)

        stats = {status.value: 0 for status in DeliveryStatus}
        async with self.session_maker() as db:
            result = await db.execute(query)
            for status, count in result.all():
                stats[status] = count
        return stats

    def start(self) -> None:
        if self._running:
            return
        if self.scheduler is not None:
            self.scheduler.add_job(
                self._tick,
                IntervalTrigger(seconds=self.interval),
                id=DRAIN_JOB_ID,
                name="Drain queued messages",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self._running = True
        logger.info(f"Queue drain loop started (every {self.interval}s)")

    def stop(self) -> None:
        if self.scheduler is not None and self.scheduler.get_job(DRAIN_JOB_ID):
            self.scheduler.remove_job(DRAIN_JOB_ID)
        self._running = False
        logger.info("Queue drain loop stopped")
