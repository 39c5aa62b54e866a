"""Tests for AI-assisted rules and messages, including the local fallbacks."""

import json

import httpx
import pytest

from crm_api.services.ai_gateway import AIGateway, AIGatewayConfig, AIUnavailableError
from crm_api.services.segment_ai_service import (
    FALLBACK_MESSAGES,
    SegmentAIService,
    extract_json,
    extract_segment_name,
    parse_rules_fallback,
    summarize_performance,
)


def gateway_replying(content=None, status_code=200, body=None):
    """Gateway whose provider answers every request with ``content`` (or the raw ``body``)."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        if status_code != 200:
            return httpx.Response(status_code, json={"error": "boom"})
        if body is not None:
            return httpx.Response(200, json=body)
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}], "model": "test-model"})

    gateway = AIGateway(
        AIGatewayConfig(base_url="https://ai.test", api_key="test-key"),
        transport=httpx.MockTransport(handler),
    )
    gateway.requests = requests
    return gateway


class TestFallbackRules:
    def test_inactive_with_units(self):
        assert parse_rules_fallback("customers inactive for 3 months") == {
            "and": [{"field": "inactive_days", "op": ">", "value": 90}]
        }
        assert parse_rules_fallback("inactive 2 weeks")["and"][0]["value"] == 14

    def test_inactive_defaults_to_90_days(self):
        assert parse_rules_fallback("inactive customers")["and"][0]["value"] == 90

    def test_spend_with_k_suffix(self):
        assert parse_rules_fallback("people who spent over $5k") == {
            "and": [{"field": "spend", "op": ">", "value": 5000.0}]
        }

    def test_spend_with_thousands_separator(self):
        assert parse_rules_fallback("spend more than 10,000")["and"][0]["value"] == 10000.0

    def test_visits(self):
        assert parse_rules_fallback("visits less than 3") == {
            "and": [{"field": "visits", "op": "<", "value": 3}]
        }

    def test_combined_conditions(self):
        rules = parse_rules_fallback("inactive 30 days and spent 2000 with visits under 5")
        assert [c["field"] for c in rules["and"]] == ["inactive_days", "spend", "visits"]

    def test_no_keywords_matches_buyers(self):
        assert parse_rules_fallback("everyone nice") == {"and": [{"field": "spend", "op": ">", "value": 0}]}


def test_segment_name_extraction():
    assert extract_segment_name("big spenders, name it 'VIP'") == "VIP"
    assert extract_segment_name("Customers who spent a lot") == "Customers who spent"
    assert extract_segment_name("spent over 100") == "Unnamed Segment"


def test_extract_json_tolerates_fences_and_chatter():
    assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}
    assert extract_json('Sure! Here you go: ["x", "y"] Enjoy.') == ["x", "y"]
    with pytest.raises(ValueError):
        extract_json("no json at all")


def test_summarize_performance():
    assert summarize_performance({"sent": 9, "failed": 1}) == (
        "Delivered 9/10 (90%) with 1 failures. Consider retrying failures and refining audience."
    )
    assert summarize_performance({}).startswith("Delivered 0/0 (0%)")


@pytest.mark.asyncio
async def test_unconfigured_gateway_is_unavailable():
    gateway = AIGateway(AIGatewayConfig(api_key=None))
    with pytest.raises(AIUnavailableError):
        await gateway.chat_completion([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_rules_fall_back_without_provider(ai_service):
    parsed = await ai_service.to_rules("customers inactive for 60 days")

    assert parsed.source == "fallback"
    assert parsed.rules == {"and": [{"field": "inactive_days", "op": ">", "value": 60}]}


@pytest.mark.asyncio
async def test_rules_from_model_reply():
    reply = '```json\n{"name": "Lapsed", "rules": {"field": "last_active_days", "op": ">", "value": 90}}\n```'
    gateway = gateway_replying(reply)
    service = SegmentAIService(gateway)

    parsed = await service.to_rules("people gone for 3 months")
    await gateway.close()

    assert parsed.source == "ai"
    assert parsed.name == "Lapsed"
    assert parsed.rules == {"and": [{"field": "inactive_days", "op": ">", "value": 90}]}
    assert "people gone for 3 months" in gateway.requests[0]["messages"][0]["content"]


@pytest.mark.asyncio
async def test_rules_fall_back_on_provider_error():
    service = SegmentAIService(gateway_replying(status_code=503))

    parsed = await service.to_rules("visits fewer than 2")

    assert parsed.source == "fallback"
    assert parsed.rules == {"and": [{"field": "visits", "op": "<", "value": 2}]}


@pytest.mark.asyncio
async def test_rules_fall_back_on_unusable_reply():
    service = SegmentAIService(gateway_replying('{"rules": "not a tree"}'))

    parsed = await service.to_rules("spent over 500")

    assert parsed.source == "fallback"


MALFORMED_COMPLETIONS = [
    [{"message": {"content": "{}"}}],
    {"choices": ["not an object"]},
    {"choices": {"message": "wrong container"}},
    {"choices": [{"message": "plain string"}]},
    {"choices": [{"message": {"content": ["a", "b"]}}]},
]


@pytest.mark.asyncio
@pytest.mark.parametrize("body", MALFORMED_COMPLETIONS)
async def test_malformed_completion_is_unavailable(body):
    gateway = gateway_replying(body=body)

    with pytest.raises(AIUnavailableError):
        await gateway.chat_completion([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
@pytest.mark.parametrize("body", MALFORMED_COMPLETIONS)
async def test_rules_fall_back_on_malformed_completion(body):
    service = SegmentAIService(gateway_replying(body=body))

    parsed = await service.to_rules("visits fewer than 4")

    assert parsed.source == "fallback"
    assert parsed.rules == {"and": [{"field": "visits", "op": "<", "value": 4}]}


@pytest.mark.asyncio
async def test_messages_fall_back_by_goal(ai_service):
    assert await ai_service.to_messages("Bring back inactive shoppers") == FALLBACK_MESSAGES["winback"]
    assert await ai_service.to_messages("Summer sale") == FALLBACK_MESSAGES["promotion"]
    assert await ai_service.to_messages("Launch our new product") == FALLBACK_MESSAGES["launch"]
    assert await ai_service.to_messages("Say thanks") == FALLBACK_MESSAGES["default"]


@pytest.mark.asyncio
async def test_messages_from_model_are_topped_up_to_three():
    service = SegmentAIService(gateway_replying('["Only one idea, {customerName}!"]'))

    messages = await service.to_messages("thank loyal customers")

    assert len(messages) == 3
    assert messages[0] == "Only one idea, {customerName}!"
    assert messages[1:] == FALLBACK_MESSAGES["default"][:2]
