"""
Sentry error tracking for the CRM backend.

Inactive unless ``SENTRY_DSN`` is configured. Callers may use the
capture helpers unconditionally.
"""

import logging
from typing import Optional, Dict, Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from crm_api.config import settings

logger = logging.getLogger(__name__)

_sentry_initialized = False

SENSITIVE_HEADERS = ("authorization", "cookie", "x-api-key")
SENSITIVE_FIELDS = ("password", "token", "secret", "api_key")


def init_sentry() -> bool:
    """Initialize Sentry SDK with FastAPI integration. Returns True if enabled."""
    global _sentry_initialized

    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=settings.VERSION,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.WARNING, event_level=logging.ERROR),
        ],
        before_send=filter_sensitive_data,
        send_default_pii=False,
        attach_stacktrace=True,
    )
    _sentry_initialized = True
    logger.info(f"Sentry initialized for {settings.ENVIRONMENT} environment")
    return True


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Scrub auth headers and secret-looking body fields before sending."""
    request = event.get("request") or {}

    headers = request.get("headers")
    if isinstance(headers, dict):
        for header in SENSITIVE_HEADERS:
            if header in headers:
                headers[header] = "[Filtered]"

    data = request.get("data")
    if isinstance(data, dict):
        for field in SENSITIVE_FIELDS:
            if field in data:
                data[field] = "[Filtered]"

    return event


def capture_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Capture an exception with extra context. Returns the event id, if sent."""
    if not _sentry_initialized:
        return None

    with sentry_sdk.new_scope() as scope:
        for key, value in (context or {}).items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)
