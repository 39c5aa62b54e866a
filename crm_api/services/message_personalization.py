"""
Message personalization.

Renders campaign templates per customer by substituting a fixed set of
``{placeholder}`` tokens, then prefixes a greeting unless the rendered
text already opens with one.
"""

import re
from dataclasses import dataclass, asdict, field
from typing import Any, Iterable, Optional

DEFAULT_FALLBACK_NAME = "Valued Customer"
DEFAULT_DISCOUNT = "10"
DEFAULT_STORE_NAME = "Our Store"
DEFAULT_COUPON_CODE = "WELCOME10"

GREETINGS = ("hi ", "hello ", "dear ")

PLACEHOLDER_PATTERN = re.compile(r"\{[^}]+\}")

# Placeholder -> PersonalizationData attribute
PLACEHOLDERS = {
    "{customerName}": "customer_name",
    "{customerEmail}": "customer_email",
    "{customerPhone}": "customer_phone",
    "{customerSpend}": "customer_spend",
    "{customerVisits}": "customer_visits",
    "{lastActive}": "last_active",
    "{name}": "customer_name",
    "{Name}": "customer_name",
    "{email}": "customer_email",
    "{phone}": "customer_phone",
    "{discount}": "discount",
    "{storeName}": "store_name",
    "{couponCode}": "coupon_code",
}


@dataclass
class PersonalizationData:
    customer_name: str
    customer_email: str
    customer_phone: str = "N/A"
    customer_spend: str = "0"
    customer_visits: str = "0"
    last_active: str = "Never"
    discount: str = DEFAULT_DISCOUNT
    store_name: str = DEFAULT_STORE_NAME
    coupon_code: str = DEFAULT_COUPON_CODE

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PersonalizedMessage:
    original_message: str
    personalized_message: str
    personalization_data: PersonalizationData = field(repr=False)


@dataclass
class TemplateValidation:
    is_valid: bool
    invalid_placeholders: list[str]


def _get(customer: Any, name: str) -> Any:
    if isinstance(customer, dict):
        return customer.get(name)
    return getattr(customer, name, None)


def _format_number(value: Any) -> str:
    if value is None:
        return "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_date(value: Any) -> str:
    if not value:
        return "Never"
    if isinstance(value, str):
        return value
    return f"{value.month}/{value.day}/{value.year}"


def build_personalization_data(
    customer: Any,
    fallback_name: str = DEFAULT_FALLBACK_NAME,
    custom_data: Optional[dict] = None,
) -> PersonalizationData:
    custom_data = custom_data or {}
    return PersonalizationData(
        customer_name=_get(customer, "name") or fallback_name,
        customer_email=_get(customer, "email") or "",
        customer_phone=_get(customer, "phone") or "N/A",
        customer_spend=_format_number(_get(customer, "spend") or 0),
        customer_visits=_format_number(_get(customer, "visits") or 0),
        last_active=_format_date(_get(customer, "last_active")),
        discount=str(custom_data.get("discount") or DEFAULT_DISCOUNT),
        store_name=custom_data.get("storeName") or DEFAULT_STORE_NAME,
        coupon_code=custom_data.get("couponCode") or DEFAULT_COUPON_CODE,
    )


def render(template: str, data: PersonalizationData) -> str:
    """Substitute known placeholders in one pass. Unknown tokens are left as-is."""

    def replace(match: re.Match) -> str:
        attribute = PLACEHOLDERS.get(match.group(0))
        if attribute is None:
            return match.group(0)
        return getattr(data, attribute)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def has_greeting(text: str) -> bool:
    return text.lower().startswith(GREETINGS)


def personalize_message(
    template: str,
    customer: Any,
    fallback_name: str = DEFAULT_FALLBACK_NAME,
    custom_data: Optional[dict] = None,
) -> PersonalizedMessage:
    """
    Render ``template`` for one customer.

    Args:
        template: Message text with ``{placeholder}`` tokens
        customer: Customer ORM object or dict
        fallback_name: Used when the customer has no name
        custom_data: Campaign context with optional ``discount``,
            ``storeName`` and ``couponCode`` keys

    Returns:
        PersonalizedMessage with the rendered text and the values used
    """
    data = build_personalization_data(customer, fallback_name, custom_data)
    text = render(template, data)
    if not has_greeting(text):
        text = f"Hi {data.customer_name}, {text}"
    return PersonalizedMessage(
        original_message=template,
        personalized_message=text,
        personalization_data=data,
    )


def personalize_messages(
    template: str,
    customers: Iterable[Any],
    fallback_name: str = DEFAULT_FALLBACK_NAME,
    custom_data: Optional[dict] = None,
) -> list[PersonalizedMessage]:
    """One PersonalizedMessage per customer, in input order."""
    return [personalize_message(template, c, fallback_name, custom_data) for c in customers]


def get_available_placeholders() -> list[str]:
    return list(PLACEHOLDERS)


def validate_template(message: str) -> TemplateValidation:
    """Flag every ``{token}`` that is not a known placeholder."""
    invalid = []
    for token in PLACEHOLDER_PATTERN.findall(message or ""):
        if token not in PLACEHOLDERS and token not in invalid:
            invalid.append(token)
    return TemplateValidation(is_valid=not invalid, invalid_placeholders=invalid)
