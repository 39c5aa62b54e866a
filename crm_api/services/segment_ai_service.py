"""
Segment AI Service

Natural language to segment rules, campaign message suggestions and a
short performance summary. Each model call has a deterministic local
fallback, so these features keep working without an AI provider:

1. Ask the model for strict JSON (fenced code blocks are tolerated)
2. On a transport error, missing provider or unparseable reply, use
   keyword/regex parsing or goal-bucketed templates
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from crm_api.services.ai_gateway import AIGateway, AIUnavailableError
from crm_api.services.segment_rules import normalize_rules

logger = logging.getLogger(__name__)

DEFAULT_INACTIVE_DAYS = 90

UNIT_DAYS = {"day": 1, "week": 7, "month": 30}

INACTIVE_PATTERN = re.compile(r"(\d+)\s*(days?|weeks?|months?)")
SPEND_PATTERN = re.compile(
    r"(?:spent|spend)\s*(?:[<>=]+|more than|over|above|at least)?\s*\$?([\d,.]+k?)"
)
VISITS_PATTERN = re.compile(
    r"visits?\s*(?:[<>=]+|less than|fewer than|under|below)?\s*(\d+)"
)
NAME_PATTERN = re.compile(r"(?:name it|call it|called)\s+[\"']?([^\"']+)[\"']?", re.IGNORECASE)

RULES_PROMPT = """You are a CRM assistant that converts natural language into customer segment rules.

Available fields (all numeric):
- spend: total amount spent
- visits: number of visits
- inactive_days: days since last activity

Available operators: ">", ">=", "<", "<=", "==", "!="

Rules structure:
- Simple condition: {{"field": ..., "op": ..., "value": ...}}
- AND: {{"and": [condition, ...]}}
- OR: {{"or": [condition, ...]}}

Example:
Input: "Customers inactive for 90 days OR spent more than 10,000"
Output: {{"name": "Inactive or High Value", "rules": {{"or": [{{"field": "inactive_days", "op": ">", "value": 90}}, {{"field": "spend", "op": ">", "value": 10000}}]}}}}

Convert: "{text}"

Return ONLY a JSON object with keys "name" and "rules"."""

MESSAGES_PROMPT = """You write short email campaign messages for a retail CRM.

Campaign goal: "{goal}"

Write 3 different messages of 20-50 words, each with a clear call to action
and an offer. Use placeholders such as {{customerName}}, {{discount}},
{{couponCode}} and {{storeName}} for personalization.

Return ONLY a JSON array of 3 strings."""

FALLBACK_MESSAGES = {
    "winback": [
        "We miss you, {customerName}! Come back and enjoy 20% off your next order with code WELCOME20.",
        "Haven't shopped in a while? We've got something special for you - free delivery on orders over $50!",
        "{customerName}, we've saved your spot! Get 15% off + free shipping when you return to {storeName}.",
    ],
    "promotion": [
        "{customerName}, don't miss out! Get up to 30% off on our best-selling items - limited time only!",
        "Exclusive offer for you: Buy 2 get 1 free on selected items. Use code B2G1FREE at checkout.",
        "Flash sale alert! Save big on your favorites - up to 50% off ends tonight. Shop now!",
    ],
    "launch": [
        "{customerName}, we're excited to share our latest collection! Get early access + 10% off.",
        "Something new is here! Be the first to discover our latest arrivals with free shipping.",
        "Introducing our newest products! {customerName}, enjoy 15% off your first order of new arrivals.",
    ],
    "default": [
        "{customerName}, we have something special for you! Enjoy 20% off your next order with code SPECIAL20.",
        "Don't miss out on this exclusive offer! Get free shipping + 15% off when you shop today.",
        "{customerName}, thank you for being a valued customer! Here's 25% off as our way of saying thanks.",
    ],
}

GOAL_BUCKETS = (
    ("winback", ("inactive", "bring back")),
    ("promotion", ("promote", "sale", "offer")),
    ("launch", ("new", "launch", "product")),
)


@dataclass
class ParsedSegment:
    name: str
    rules: dict
    source: str  # "ai" or "fallback"

    def to_dict(self) -> dict:
        return {"name": self.name, "rules": self.rules, "source": self.source}


def _parse_amount(token: str) -> float:
    token = token.replace(",", "").lower().rstrip(".")
    if token.endswith("k"):
        return float(token[:-1]) * 1000
    return float(token)


def parse_rules_fallback(text: str) -> dict:
    """Keyword scan for inactivity, spend and visits. Always returns an ``and`` group."""
    lowered = text.lower()
    conditions = []

    if "inactive" in lowered:
        days = DEFAULT_INACTIVE_DAYS
        match = INACTIVE_PATTERN.search(lowered)
        if match:
            unit = match.group(2).rstrip("s")
            days = int(match.group(1)) * UNIT_DAYS[unit]
        conditions.append({"field": "inactive_days", "op": ">", "value": days})

    match = SPEND_PATTERN.search(lowered)
    if match:
        try:
            conditions.append({"field": "spend", "op": ">", "value": _parse_amount(match.group(1))})
        except ValueError:
            logger.debug(f"Ignoring unparseable spend amount {match.group(1)!r}")

    match = VISITS_PATTERN.search(lowered)
    if match:
        conditions.append({"field": "visits", "op": "<", "value": int(match.group(1))})

    if not conditions:
        conditions.append({"field": "spend", "op": ">", "value": 0})
    return {"and": conditions}


def extract_segment_name(text: str) -> str:
    match = NAME_PATTERN.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    if "customers" in text.lower():
        words = re.sub(r"[^\w\s]", "", " ".join(text.split()[:3])).strip()
        return words or "Custom Segment"
    return "Unnamed Segment"


def fallback_messages(goal: str) -> list[str]:
    lowered = goal.strip().lower()
    for bucket, keywords in GOAL_BUCKETS:
        if any(keyword in lowered for keyword in keywords):
            return list(FALLBACK_MESSAGES[bucket])
    return list(FALLBACK_MESSAGES["default"])


def summarize_performance(stats: dict) -> str:
    """One-sentence delivery summary from ``sent``/``failed`` counts."""
    sent = stats.get("sent", 0)
    failed = stats.get("failed", 0)
    total = sent + failed
    rate = round(sent / total * 100) if total else 0
    return (
        f"Delivered {sent}/{total} ({rate}%) with {failed} failures. "
        "Consider retrying failures and refining audience."
    )


def extract_json(text: str) -> Any:
    """Parse JSON from a model reply, tolerating code fences and chatter."""
    cleaned = text.strip()
    if "```json" in cleaned:
        cleaned = cleaned.split("```json", 1)[1].split("```", 1)[0].strip()
    elif "```" in cleaned:
        cleaned = cleaned.split("```", 1)[1].split("```", 1)[0].strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"[\[{][\s\S]*[\]}]", cleaned)
        if not match:
            raise
        return json.loads(match.group())


class SegmentAIService:
    """AI-assisted segment and message authoring with local fallbacks."""

    def __init__(self, gateway: Optional[AIGateway] = None):
        self.gateway = gateway or AIGateway()

    async def _complete(self, prompt: str) -> str:
        response = await self.gateway.chat_completion(
            [{"role": "user", "content": prompt}],
            temperature=0.2,
        )
        return response["content"]

    async def to_rules(self, text: str) -> ParsedSegment:
        """Natural language description to ``{name, rules}``."""
        try:
            parsed = extract_json(await self._complete(RULES_PROMPT.format(text=text)))
            if not isinstance(parsed, dict) or not parsed.get("name") or not isinstance(parsed.get("rules"), dict):
                raise ValueError("AI reply is missing name or rules")
            rules = normalize_rules(parsed["rules"])
            if "field" in rules:
                rules = {"and": [rules]}
            return ParsedSegment(name=parsed["name"], rules=rules, source="ai")
        except (AIUnavailableError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"AI rule parsing unavailable, using fallback: {e}")
            return ParsedSegment(
                name=extract_segment_name(text),
                rules=parse_rules_fallback(text),
                source="fallback",
            )

    async def to_messages(self, goal: str) -> list[str]:
        """Three message suggestions for a campaign goal."""
        try:
            parsed = extract_json(await self._complete(MESSAGES_PROMPT.format(goal=goal)))
            if not isinstance(parsed, list):
                raise ValueError("AI reply is not a list")
            messages = [m.strip() for m in parsed if isinstance(m, str) and m.strip()]
            if not messages:
                raise ValueError("AI reply has no messages")
            # Top up from the templates so callers always get three
            messages = (messages + fallback_messages(goal))[:3]
            return messages
        except (AIUnavailableError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"AI message generation unavailable, using fallback: {e}")
            return fallback_messages(goal)
