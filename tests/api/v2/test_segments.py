"""Tests for segment endpoints."""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from crm_api.utils.time import utcnow
from tests.factories import CustomerFactory, SegmentFactory

HIGH_SPENDERS = {"and": [{"field": "spend", "op": ">", "value": 1000}]}


@pytest.fixture
def seeded_customers(add_customers):
    async def _seed():
        now = utcnow()
        return await add_customers(
            {"spend": 2500, "visits": 10, "last_active": now - timedelta(days=2)},
            {"spend": 1200, "visits": 1, "last_active": now - timedelta(days=120)},
            {"spend": 300, "visits": 7, "last_active": now - timedelta(days=5)},
        )

    return _seed


class TestSegmentCreate:
    @pytest.mark.asyncio
    async def test_create_populates_snapshot(self, authenticated_client: AsyncClient, seeded_customers):
        await seeded_customers()

        response = await authenticated_client.post(
            "/api/v2/segments/", json=SegmentFactory(name="High Spenders", rules=HIGH_SPENDERS)
        )

        assert response.status_code == 201
        body = response.json()
        assert body["customerCount"] == 2
        assert body["createdBy"] == "test@example.com"
        assert body["lastPopulatedAt"] is not None
        assert "warning" not in body or body["warning"] is None

    @pytest.mark.asyncio
    async def test_last_active_days_alias(self, authenticated_client: AsyncClient, seeded_customers):
        await seeded_customers()
        rules = {"and": [{"field": "last_active_days", "op": ">=", "value": 90}]}

        body = (await authenticated_client.post("/api/v2/segments/", json=SegmentFactory(rules=rules))).json()

        assert body["customerCount"] == 1
        assert body["rules"]["and"][0]["field"] == "inactive_days"

    @pytest.mark.asyncio
    async def test_strict_mode_rejects_unknown_nodes(self, authenticated_client: AsyncClient):
        rules = {"and": [{"field": "favorite_color", "op": "==", "value": "blue"}]}

        response = await authenticated_client.post(
            "/api/v2/segments/", params={"strict": "true"}, json=SegmentFactory(rules=rules)
        )

        assert response.status_code == 422
        assert response.json()["code"] == "VAL_003"

    @pytest.mark.asyncio
    async def test_permissive_mode_accepts_unknown_nodes(self, authenticated_client: AsyncClient, seeded_customers):
        await seeded_customers()
        rules = {"and": [{"field": "favorite_color", "op": "==", "value": "blue"}]}

        response = await authenticated_client.post("/api/v2/segments/", json=SegmentFactory(rules=rules))

        assert response.status_code == 201
        assert response.json()["customerCount"] == 0

    @pytest.mark.asyncio
    async def test_empty_segment_is_valid(self, authenticated_client: AsyncClient):
        response = await authenticated_client.post("/api/v2/segments/", json=SegmentFactory())

        assert response.status_code == 201
        assert response.json()["customerCount"] == 0


class TestSegmentQueries:
    @pytest.mark.asyncio
    async def test_preview_does_not_persist(self, authenticated_client: AsyncClient, seeded_customers):
        await seeded_customers()

        response = await authenticated_client.post("/api/v2/segments/preview", json={"rules": HIGH_SPENDERS})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert body["scanned"] == 3
        assert len(body["sample"]) == 2
        assert (await authenticated_client.get("/api/v2/segments/")).json() == []

    @pytest.mark.asyncio
    async def test_customers_pagination(self, authenticated_client: AsyncClient):
        await authenticated_client.post(
            "/api/v2/customers/bulk",
            json={"customers": CustomerFactory.create_batch(5, spend=2000)},
        )
        segment = (
            await authenticated_client.post("/api/v2/segments/", json=SegmentFactory(rules=HIGH_SPENDERS))
        ).json()

        page = (
            await authenticated_client.get(
                f"/api/v2/segments/{segment['id']}/customers", params={"limit": 2, "offset": 2}
            )
        ).json()
        assert page["total"] == 5
        assert len(page["items"]) == 2
        assert page["hasMore"] is True

        last = (
            await authenticated_client.get(
                f"/api/v2/segments/{segment['id']}/customers", params={"limit": 2, "offset": 4}
            )
        ).json()
        assert len(last["items"]) == 1
        assert last["hasMore"] is False

        everything = (await authenticated_client.get(f"/api/v2/segments/{segment['id']}/customers")).json()
        assert len(everything["items"]) == 5
        assert everything["hasMore"] is False

    @pytest.mark.asyncio
    async def test_update_rules_repopulates(self, authenticated_client: AsyncClient, seeded_customers):
        await seeded_customers()
        segment = (
            await authenticated_client.post("/api/v2/segments/", json=SegmentFactory(rules=HIGH_SPENDERS))
        ).json()

        response = await authenticated_client.patch(
            f"/api/v2/segments/{segment['id']}",
            json={"rules": {"and": [{"field": "visits", "op": ">=", "value": 5}]}},
        )

        assert response.status_code == 200
        assert response.json()["customerCount"] == 2

    @pytest.mark.asyncio
    async def test_resubmitting_same_rules_repopulates(self, authenticated_client: AsyncClient, seeded_customers):
        await seeded_customers()
        segment = (
            await authenticated_client.post("/api/v2/segments/", json=SegmentFactory(rules=HIGH_SPENDERS))
        ).json()
        assert segment["customerCount"] == 2
        await authenticated_client.post("/api/v2/customers/", json=CustomerFactory(spend=9000))

        body = (
            await authenticated_client.patch(f"/api/v2/segments/{segment['id']}", json={"rules": HIGH_SPENDERS})
        ).json()

        assert body["customerCount"] == 3

    @pytest.mark.asyncio
    async def test_rename_keeps_snapshot(self, authenticated_client: AsyncClient, seeded_customers):
        await seeded_customers()
        segment = (
            await authenticated_client.post("/api/v2/segments/", json=SegmentFactory(rules=HIGH_SPENDERS))
        ).json()

        body = (
            await authenticated_client.patch(f"/api/v2/segments/{segment['id']}", json={"name": "Whales"})
        ).json()

        assert body["name"] == "Whales"
        assert body["customerCount"] == 2

    @pytest.mark.asyncio
    async def test_other_owner_segment_not_found(
        self, authenticated_client: AsyncClient, add_segment, other_user
    ):
        foreign = await add_segment(HIGH_SPENDERS, owner_id=other_user.id)

        response = await authenticated_client.get(f"/api/v2/segments/{foreign.id}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, authenticated_client: AsyncClient):
        segment = (await authenticated_client.post("/api/v2/segments/", json=SegmentFactory())).json()

        assert (await authenticated_client.delete(f"/api/v2/segments/{segment['id']}")).status_code == 204
        assert (await authenticated_client.get(f"/api/v2/segments/{segment['id']}")).status_code == 404
