"""Tests for message personalization."""

from datetime import datetime

from crm_api.services.message_personalization import (
    DEFAULT_FALLBACK_NAME,
    get_available_placeholders,
    personalize_message,
    personalize_messages,
    validate_template,
)


def test_greeting_prefixed_and_placeholders_filled():
    result = personalize_message(
        "Enjoy {discount}% off, {customerName}!",
        {"name": "Ann"},
        custom_data={"discount": "15"},
    )

    assert result.personalized_message == "Hi Ann, Enjoy 15% off, Ann!"
    assert result.original_message == "Enjoy {discount}% off, {customerName}!"


def test_existing_greeting_is_kept():
    expected = {
        "Hi {name}, thanks!": "Hi Bo, thanks!",
        "hello there {name}": "hello there Bo",
        "DEAR {name} we miss you": "DEAR Bo we miss you",
    }
    for template, rendered in expected.items():
        assert personalize_message(template, {"name": "Bo"}).personalized_message == rendered


def test_every_placeholder_is_replaced():
    template = " ".join(get_available_placeholders())
    customer = {
        "name": "Cy",
        "email": "cy@example.com",
        "phone": "555-0100",
        "spend": 1200.0,
        "visits": 7,
        "last_active": datetime(2025, 3, 9),
    }

    text = personalize_message(template, customer).personalized_message

    for token in get_available_placeholders():
        assert token not in text
    assert "1200" in text
    assert "3/9/2025" in text


def test_defaults_for_missing_customer_data():
    result = personalize_message(
        "{customerPhone} {lastActive} {storeName} {couponCode}",
        {"email": "x@example.com"},
    )

    assert result.personalized_message == f"Hi {DEFAULT_FALLBACK_NAME}, N/A Never Our Store WELCOME10"


def test_unknown_tokens_are_left_in_place():
    text = personalize_message("Hi {name}, {mystery}", {"name": "Di"}).personalized_message
    assert text == "Hi Di, {mystery}"


def test_personalize_messages_preserves_order():
    results = personalize_messages("Hello {name}", [{"name": "A"}, {"name": "B"}])
    assert [r.personalized_message for r in results] == ["Hello A", "Hello B"]


class TestValidateTemplate:
    def test_known_placeholders_are_valid(self):
        validation = validate_template("Hi {customerName}, use {couponCode} at {storeName}")
        assert validation.is_valid
        assert validation.invalid_placeholders == []

    def test_only_unknown_tokens_are_flagged(self):
        validation = validate_template("{customerName} {firstName} {points} {firstName}")
        assert not validation.is_valid
        assert validation.invalid_placeholders == ["{firstName}", "{points}"]

    def test_plain_text_is_valid(self):
        assert validate_template("No placeholders here").is_valid
