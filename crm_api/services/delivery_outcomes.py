"""
Delivery outcome recording.

Every terminal delivery result (vendor receipt, queue drain, webhook)
is expressed as a ``DeliveryOutcomeRecorded`` event and applied here to
both the CommunicationLog and SentMessage rows sharing its message id.
Only PENDING/QUEUED rows transition, so replaying an outcome is a no-op.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_api.models.communication_log import CommunicationLog, DeliveryStatus, OPEN_STATUSES
from crm_api.models.sent_message import SentMessage
from crm_api.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryOutcomeRecorded:
    message_id: str
    status: DeliveryStatus
    occurred_at: datetime = field(default_factory=utcnow)
    error_message: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "status", DeliveryStatus(self.status))
        if not self.status.is_terminal:
            raise ValueError(f"Outcome status must be SENT or FAILED, got {self.status}")
        if self.status == DeliveryStatus.FAILED and not self.error_message:
            raise ValueError("A FAILED outcome requires an error message")


class RecordResult(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_TERMINAL = "already_terminal"
    UNKNOWN = "unknown"


class DeliveryOutcomeRecorder:
    """Applies outcomes using short-lived sessions from ``session_maker``."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def apply(self, db: AsyncSession, outcome: DeliveryOutcomeRecorded) -> RecordResult:
        """Apply one outcome inside the caller's session. Does not commit."""
        status = outcome.status.value
        sent_at = outcome.occurred_at if status == DeliveryStatus.SENT.value else None
        now = utcnow()

        log_result = await db.execute(
            update(CommunicationLog)
            .where(
                CommunicationLog.vendor_message_id == outcome.message_id,
                CommunicationLog.status.in_(OPEN_STATUSES),
            )
            .values(
                status=status,
                sent_at=sent_at,
                error_message=outcome.error_message,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        message_result = await db.execute(
            update(SentMessage)
            .where(
                SentMessage.message_id == outcome.message_id,
                SentMessage.status.in_(OPEN_STATUSES),
            )
            .values(
                status=status,
                sent_at=sent_at,
                error_message=outcome.error_message,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if log_result.rowcount or message_result.rowcount:
            return RecordResult.APPLIED
        if await self._exists(db, outcome.message_id):
            return RecordResult.ALREADY_TERMINAL
        return RecordResult.UNKNOWN

    async def _exists(self, db: AsyncSession, message_id: str) -> bool:
        found = await db.scalar(
            select(SentMessage.id).where(SentMessage.message_id == message_id).limit(1)
        )
        if found is not None:
            return True
        found = await db.scalar(
            select(CommunicationLog.id).where(CommunicationLog.vendor_message_id == message_id).limit(1)
        )
        return found is not None

    async def record(self, outcome: DeliveryOutcomeRecorded) -> RecordResult:
        async with self.session_maker() as db:
            result = await self.apply(db, outcome)
            await db.commit()

        if result is RecordResult.APPLIED:
            logger.info(f"Delivery outcome {outcome.status.value} recorded for {outcome.message_id}")
        elif result is RecordResult.UNKNOWN:
            logger.warning(f"Delivery outcome for unknown message {outcome.message_id}")
        return result

    async def record_many(self, outcomes: Iterable[DeliveryOutcomeRecorded]) -> int:
        """Apply a batch in one transaction. Returns how many transitioned."""
        outcomes = list(outcomes)
        applied = 0
        async with self.session_maker() as db:
            for outcome in outcomes:
                if await self.apply(db, outcome) is RecordResult.APPLIED:
                    applied += 1
            await db.commit()
        logger.info(f"Recorded {applied}/{len(outcomes)} delivery outcomes")
        return applied
