"""Tests for AI-assisted authoring endpoints (no provider configured)."""

import pytest
from httpx import AsyncClient

from crm_api.models.campaign import Campaign, CampaignStatus
from crm_api.models.communication_log import DeliveryStatus


class TestAIEndpoints:
    @pytest.mark.asyncio
    async def test_rules_from_text(self, authenticated_client: AsyncClient):
        response = await authenticated_client.post(
            "/api/v2/ai/rules", json={"text": "Customers inactive for 3 months who spent over $5k"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "fallback"
        assert body["rules"] == {
            "and": [
                {"field": "inactive_days", "op": ">", "value": 90},
                {"field": "spend", "op": ">", "value": 5000.0},
            ]
        }

    @pytest.mark.asyncio
    async def test_rules_require_text(self, authenticated_client: AsyncClient):
        response = await authenticated_client.post("/api/v2/ai/rules", json={"text": ""})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_messages_for_goal(self, authenticated_client: AsyncClient):
        response = await authenticated_client.post("/api/v2/ai/messages", json={"goal": "Bring back inactive users"})

        messages = response.json()["messages"]
        assert len(messages) == 3
        assert messages[0].startswith("We miss you")

    @pytest.mark.asyncio
    async def test_campaign_summary(
        self, authenticated_client: AsyncClient, add_segment, add_delivery_records, test_db, test_user
    ):
        segment = await add_segment({"and": []})
        campaign = Campaign(
            user_id=test_user.id,
            segment_id=segment.id,
            message="Hi {name}",
            subject="Hello",
            status=CampaignStatus.COMPLETED.value,
        )
        test_db.add(campaign)
        await test_db.commit()
        campaign_id = campaign.id

        for n, status in enumerate([DeliveryStatus.SENT] * 3 + [DeliveryStatus.FAILED]):
            await add_delivery_records(f"c{campaign_id}-{n}", status=status, campaign_id=campaign_id)

        response = await authenticated_client.get(f"/api/v2/ai/campaigns/{campaign_id}/summary")

        assert response.status_code == 200
        assert response.json() == {
            "campaignId": campaign_id,
            "summary": "Delivered 3/4 (75%) with 1 failures. Consider retrying failures and refining audience.",
        }

    @pytest.mark.asyncio
    async def test_summary_for_unknown_campaign(self, authenticated_client: AsyncClient):
        response = await authenticated_client.get("/api/v2/ai/campaigns/12345/summary")
        assert response.status_code == 404
