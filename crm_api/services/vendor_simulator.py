"""
Delivery Simulator - in-process stand-in for an external messaging vendor.

Each submitted message gets one SENT/FAILED decision drawn at submission
time. The matching delivery receipt is reported later, either

- individually, after a randomized per-message delay, or
- batched, queued and flushed on a fixed interval in chunks.

Receipts are applied through the DeliveryOutcomeRecorder. A receipt
that cannot be recorded goes back on the pending queue for the next
flush, and ``stop()`` flushes everything still outstanding.
"""

import asyncio
import enum
import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from crm_api.config import settings
from crm_api.models.communication_log import DeliveryStatus
from crm_api.services.delivery_outcomes import DeliveryOutcomeRecorded, DeliveryOutcomeRecorder
from crm_api.utils.time import utcnow

logger = logging.getLogger(__name__)

FAILURE_REASONS = (
    "Invalid email address",
    "Recipient mailbox full",
    "Domain not found",
    "Recipient blocked sender",
    "Temporary delivery failure",
)

FLUSH_JOB_ID = "delivery_receipt_flush"


class ReceiptMode(str, enum.Enum):
    INDIVIDUAL = "individual"
    BATCHED = "batched"


@dataclass
class VendorMessage:
    message_id: str
    recipient_email: str
    message: str
    recipient_name: Optional[str] = None
    subject: Optional[str] = None


@dataclass
class VendorResponse:
    accepted: bool
    vendor_message_id: str
    status: DeliveryStatus
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "vendorMessageId": self.vendor_message_id,
            "status": self.status.value,
            "errorMessage": self.error_message,
        }


@dataclass
class _Receipt:
    message_id: str
    status: DeliveryStatus
    error_message: Optional[str]
    delay: float

    def to_outcome(self) -> DeliveryOutcomeRecorded:
        return DeliveryOutcomeRecorded(
            message_id=self.message_id,
            status=self.status,
            occurred_at=utcnow(),
            error_message=self.error_message,
        )


class DeliverySimulator:
    """Simulated vendor with a start/stop lifecycle owned by the app."""

    def __init__(
        self,
        recorder: DeliveryOutcomeRecorder,
        scheduler: Optional[AsyncIOScheduler] = None,
        *,
        success_rate: float = 0.9,
        latency: tuple[float, float] = (0.5, 1.5),
        sent_receipt_delay: tuple[float, float] = (2.0, 7.0),
        failed_receipt_delay: tuple[float, float] = (1.0, 4.0),
        mode: ReceiptMode = ReceiptMode.INDIVIDUAL,
        batch_size: int = 10,
        flush_interval: float = 5.0,
        rng: Optional[random.Random] = None,
    ):
        self.recorder = recorder
        self.scheduler = scheduler
        self.success_rate = success_rate
        self.latency = latency
        self.sent_receipt_delay = sent_receipt_delay
        self.failed_receipt_delay = failed_receipt_delay
        self.mode = ReceiptMode(mode)
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.rng = rng or random.Random()

        self._pending: deque[_Receipt] = deque()
        self._in_flight: dict[str, tuple[asyncio.Task, _Receipt]] = {}
        self._flush_lock = asyncio.Lock()
        self._running = False

    @classmethod
    def from_settings(
        cls,
        recorder: DeliveryOutcomeRecorder,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> "DeliverySimulator":
        return cls(
            recorder,
            scheduler,
            success_rate=settings.DELIVERY_SUCCESS_RATE,
            latency=(settings.VENDOR_LATENCY_MIN, settings.VENDOR_LATENCY_MAX),
            sent_receipt_delay=(settings.RECEIPT_DELAY_SENT_MIN, settings.RECEIPT_DELAY_SENT_MAX),
            failed_receipt_delay=(settings.RECEIPT_DELAY_FAILED_MIN, settings.RECEIPT_DELAY_FAILED_MAX),
            mode=settings.RECEIPT_MODE,
            batch_size=settings.RECEIPT_BATCH_SIZE,
            flush_interval=settings.RECEIPT_FLUSH_INTERVAL_SECONDS,
        )

    @property
    def running(self) -> bool:
        return self._running

    def decide(self) -> tuple[DeliveryStatus, Optional[str]]:
        """Draw the terminal outcome for one message."""
        if self.rng.random() < self.success_rate:
            return DeliveryStatus.SENT, None
        return DeliveryStatus.FAILED, self.rng.choice(FAILURE_REASONS)

    def _draw(self, bounds: tuple[float, float]) -> float:
        low, high = bounds
        if high <= 0:
            return 0.0
        return self.rng.uniform(low, high)

    async def send(self, message: VendorMessage) -> VendorResponse:
        """
        Submit one message.

        The returned status is the vendor's decision. The persistent
        records only change when the receipt is applied later.
        """
        delay = self._draw(self.latency)
        if delay:
            await asyncio.sleep(delay)

        status, error_message = self.decide()
        bounds = self.sent_receipt_delay if status == DeliveryStatus.SENT else self.failed_receipt_delay
        receipt = _Receipt(message.message_id, status, error_message, self._draw(bounds))

        if self.mode == ReceiptMode.BATCHED:
            self._pending.append(receipt)
        else:
            task = asyncio.create_task(self._deliver_later(receipt))
            self._in_flight[receipt.message_id] = (task, receipt)

        if status == DeliveryStatus.SENT:
            logger.info(f"Vendor accepted {message.message_id} for {message.recipient_email}")
        else:
            logger.warning(
                f"Vendor will fail {message.message_id} for {message.recipient_email}: {error_message}"
            )

        return VendorResponse(
            accepted=True,
            vendor_message_id=message.message_id,
            status=status,
            error_message=error_message,
        )

    async def _deliver_later(self, receipt: _Receipt) -> None:
        try:
            if receipt.delay:
                await asyncio.sleep(receipt.delay)
            await self.recorder.record(receipt.to_outcome())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Receipt for {receipt.message_id} failed, re-queued: {e}")
            self._pending.append(receipt)
        finally:
            self._in_flight.pop(receipt.message_id, None)

    async def flush(self) -> int:
        """Apply pending receipts in batches of ``batch_size``. Returns how many were applied."""
        applied = 0
        async with self._flush_lock:
            while self._pending:
                batch = [self._pending.popleft() for _ in range(min(self.batch_size, len(self._pending)))]
                try:
                    applied += await self.recorder.record_many(r.to_outcome() for r in batch)
                except Exception:
                    # Keep FIFO order for the next attempt
                    self._pending.extendleft(reversed(batch))
                    raise
        return applied

    async def _flush_job(self) -> None:
        try:
            count = await self.flush()
            if count:
                logger.info(f"Flushed {count} delivery receipts")
        except Exception as e:
            logger.error(f"Delivery receipt flush failed: {e}")

    async def wait_until_idle(self) -> None:
        """Wait for in-flight individual receipts, then flush the queue."""
        while self._in_flight:
            tasks = [task for task, _ in self._in_flight.values()]
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.flush()

    def start(self) -> None:
        if self._running:
            return
        if self.scheduler is not None:
            self.scheduler.add_job(
                self._flush_job,
                IntervalTrigger(seconds=self.flush_interval),
                id=FLUSH_JOB_ID,
                name="Flush delivery receipts",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self._running = True
        logger.info(f"Delivery simulator started ({self.mode.value} receipts)")

    async def stop(self) -> None:
        """Stop the flush job and deliver every outstanding receipt now."""
        if self.scheduler is not None and self.scheduler.get_job(FLUSH_JOB_ID):
            self.scheduler.remove_job(FLUSH_JOB_ID)

        for message_id, (task, receipt) in list(self._in_flight.items()):
            task.cancel()
            receipt.delay = 0.0
            self._pending.append(receipt)
        if self._in_flight:
            await asyncio.gather(*(task for task, _ in self._in_flight.values()), return_exceptions=True)
        self._in_flight.clear()

        await self.flush()
        self._running = False
        logger.info("Delivery simulator stopped")

    def get_status(self) -> dict:
        return {
            "mode": self.mode.value,
            "running": self._running,
            "pendingReceipts": len(self._pending),
            "inFlight": len(self._in_flight),
            "batchSize": self.batch_size,
        }
