"""
Segment Population Service

Materializes a segment's rule tree into a snapshot of matching customer
ids stored on the segment itself, and serves paged reads over that
snapshot. Snapshots are refreshed eagerly on create/update and lazily
on read once they are empty or older than the staleness window.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_api.config import settings
from crm_api.exceptions import NotFoundError
from crm_api.models.customer import Customer
from crm_api.models.segment import Segment
from crm_api.services.segment_rules import filter_customers
from crm_api.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


class SegmentPopulationService:
    """Computes and caches segment membership for one owner's data."""

    def __init__(
        self,
        db: AsyncSession,
        stale_after: Optional[timedelta] = None,
        strict: Optional[bool] = None,
    ):
        self.db = db
        self.stale_after = stale_after or timedelta(seconds=settings.SEGMENT_STALE_AFTER_SECONDS)
        self.strict = settings.SEGMENT_RULES_STRICT if strict is None else strict

    async def get_segment(self, segment_id: int, owner_id: int) -> Segment:
        result = await self.db.execute(
            select(Segment).where(Segment.id == segment_id, Segment.user_id == owner_id)
        )
        segment = result.scalar_one_or_none()
        if segment is None:
            raise NotFoundError("Segment", segment_id)
        return segment

    async def _owner_customers(self, owner_id: int, limit: Optional[int] = None) -> list[Customer]:
        query = select(Customer).where(Customer.user_id == owner_id).order_by(Customer.id)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def match(self, owner_id: int, rules: dict) -> list[Customer]:
        """Evaluate ``rules`` over all of the owner's customers."""
        customers = await self._owner_customers(owner_id)
        return filter_customers(customers, rules, strict=self.strict)

    async def resolve_audience(self, segment: Segment) -> list[Customer]:
        """Recompute and commit the snapshot, returning the matching customers."""
        matching = await self.match(segment.user_id, segment.rules_json)
        customer_ids = [c.id for c in matching]

        segment.customer_ids = customer_ids
        segment.customer_count = len(customer_ids)
        segment.last_populated_at = utcnow()
        await self.db.commit()

        logger.info(
            f"Segment {segment.id} populated with {segment.customer_count} customers"
        )
        return matching

    async def populate(self, segment: Segment) -> int:
        """Recompute the snapshot for ``segment``. Returns the count."""
        return len(await self.resolve_audience(segment))

    async def materialize(self, segment_id: int, owner_id: int) -> int:
        segment = await self.get_segment(segment_id, owner_id)
        return await self.populate(segment)

    def is_stale(self, segment: Segment, now: Optional[datetime] = None) -> bool:
        if not segment.customer_count or segment.last_populated_at is None:
            return True
        age = (now or utcnow()) - as_utc(segment.last_populated_at)
        return age > self.stale_after

    async def refresh_if_stale(self, segment: Segment) -> bool:
        """Repopulate a stale snapshot. Returns True when it was refreshed."""
        if not self.is_stale(segment):
            return False
        await self.populate(segment)
        return True

    async def refresh_all(self, owner_id: int) -> list[Segment]:
        """All of the owner's segments, refreshing the stale ones in place.

        A failed refresh leaves that segment's previous snapshot intact.
        """
        query = select(Segment).where(Segment.user_id == owner_id).order_by(Segment.created_at.desc(), Segment.id.desc())
        segments = list((await self.db.execute(query)).scalars().all())
        failed = False
        for segment_id in [s.id for s in segments]:
            try:
                # get() reloads rows expired by an earlier rollback
                await self.refresh_if_stale(await self.db.get(Segment, segment_id))
            except Exception as e:
                await self.db.rollback()
                failed = True
                logger.warning(f"Failed to refresh segment {segment_id}: {e}")
        if failed:
            # Rollback expired the loaded rows
            segments = list((await self.db.execute(query)).scalars().all())
        return segments

    async def get_customers(
        self,
        segment_id: int,
        owner_id: int,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> tuple[list[Customer], int]:
        """
        Page through a segment's snapshot.

        An empty or never-populated snapshot is materialized first. Only
        the requested slice of ids is loaded, in snapshot order.

        Returns:
            (customers, total) where total is the snapshot size
        """
        segment = await self.get_segment(segment_id, owner_id)
        if not segment.customer_ids or segment.last_populated_at is None:
            await self.populate(segment)

        ids = list(segment.customer_ids or [])
        end = None if limit is None else offset + limit
        page_ids = ids[offset:end]
        if not page_ids:
            return [], len(ids)

        result = await self.db.execute(
            select(Customer).where(Customer.id.in_(page_ids), Customer.user_id == owner_id)
        )
        by_id = {c.id: c for c in result.scalars().all()}
        # Customers deleted since the snapshot are skipped
        return [by_id[i] for i in page_ids if i in by_id], len(ids)

    async def preview(self, owner_id: int, rules: dict, sample_size: int = 10) -> dict:
        """Count matches for unsaved rules over at most SEGMENT_PREVIEW_LIMIT customers."""
        customers = await self._owner_customers(owner_id, limit=settings.SEGMENT_PREVIEW_LIMIT)
        matching = filter_customers(customers, rules, strict=self.strict)
        return {
            "count": len(matching),
            "scanned": len(customers),
            "sample": matching[:sample_size],
        }
