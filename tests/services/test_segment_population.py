"""Tests for segment materialization."""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from crm_api.exceptions import NotFoundError
from crm_api.services.segment_population import SegmentPopulationService
from crm_api.services.segment_rules import UnrecognizedRuleError
from crm_api.utils.time import utcnow

HIGH_SPEND = {"and": [{"field": "spend", "op": ">", "value": 1000}]}


@pytest.mark.asyncio
async def test_materialize_stores_snapshot(test_db, test_user, add_customers, add_segment):
    customers = await add_customers({"spend": 500}, {"spend": 1500}, {"spend": 1000}, {"spend": 2500})
    segment = await add_segment(HIGH_SPEND)

    count = await SegmentPopulationService(test_db).materialize(segment.id, test_user.id)

    assert count == 2
    assert sorted(segment.customer_ids) == sorted([customers[1].id, customers[3].id])
    assert segment.customer_count == 2
    assert segment.last_populated_at is not None


@pytest.mark.asyncio
async def test_materialize_is_idempotent(test_db, test_user, add_customers, add_segment):
    await add_customers({"spend": 2000}, {"spend": 10}, {"spend": 5000})
    segment = await add_segment(HIGH_SPEND)
    service = SegmentPopulationService(test_db)

    await service.populate(segment)
    first = (segment.customer_count, set(segment.customer_ids))
    await service.populate(segment)

    assert (segment.customer_count, set(segment.customer_ids)) == first


@pytest.mark.asyncio
async def test_other_owners_customers_are_excluded(test_db, test_user, other_user, add_customers, add_segment):
    await add_customers({"spend": 5000})
    await add_customers({"spend": 9000, "email": "theirs@example.com"}, owner_id=other_user.id)
    segment = await add_segment(HIGH_SPEND)

    assert await SegmentPopulationService(test_db).populate(segment) == 1


@pytest.mark.asyncio
async def test_segment_of_another_owner_is_not_found(test_db, other_user, add_segment, test_user):
    segment = await add_segment(HIGH_SPEND, owner_id=other_user.id)

    with pytest.raises(NotFoundError):
        await SegmentPopulationService(test_db).materialize(segment.id, test_user.id)


@pytest.mark.asyncio
async def test_strict_population_rejects_bad_rules(test_db, add_customers, add_segment):
    await add_customers({"spend": 10})
    segment = await add_segment({"and": [{"field": "spend", "op": "between", "value": 1}]})

    with pytest.raises(UnrecognizedRuleError):
        await SegmentPopulationService(test_db, strict=True).populate(segment)


class TestStaleness:
    def test_never_populated_is_stale(self):
        segment = SimpleNamespace(customer_count=3, last_populated_at=None)
        assert SegmentPopulationService(None).is_stale(segment)

    def test_empty_snapshot_is_stale(self):
        segment = SimpleNamespace(customer_count=0, last_populated_at=utcnow())
        assert SegmentPopulationService(None).is_stale(segment)

    def test_fresh_and_old_snapshots(self):
        service = SegmentPopulationService(None, stale_after=timedelta(minutes=5))
        fresh = SimpleNamespace(customer_count=3, last_populated_at=utcnow())
        old = SimpleNamespace(customer_count=3, last_populated_at=utcnow() - timedelta(minutes=10))

        assert not service.is_stale(fresh)
        assert service.is_stale(old)


@pytest.mark.asyncio
async def test_refresh_all_repopulates_stale_segments(test_db, test_user, add_customers, add_segment):
    await add_customers({"spend": 2000})
    stale = await add_segment(HIGH_SPEND, name="Stale")

    segments = await SegmentPopulationService(test_db).refresh_all(test_user.id)

    assert [s.id for s in segments] == [stale.id]
    assert segments[0].customer_count == 1


@pytest.mark.asyncio
async def test_get_customers_pages_through_snapshot(test_db, test_user, add_customers, add_segment):
    customers = await add_customers(*({"spend": 2000 + n} for n in range(5)))
    segment = await add_segment(HIGH_SPEND)
    service = SegmentPopulationService(test_db)

    page, total = await service.get_customers(segment.id, test_user.id, limit=2, offset=2)

    assert total == 5
    assert [c.id for c in page] == [customers[2].id, customers[3].id]


@pytest.mark.asyncio
async def test_preview_does_not_persist(test_db, test_user, add_customers, add_segment):
    await add_customers({"spend": 10}, {"spend": 2000}, {"spend": 3000})

    preview = await SegmentPopulationService(test_db).preview(test_user.id, HIGH_SPEND, sample_size=1)

    assert preview["count"] == 2
    assert preview["scanned"] == 3
    assert len(preview["sample"]) == 1
