"""
FastAPI Dependencies

Provides dependency injection for database sessions, authentication
and the long-lived delivery services owned by the application.

SECURITY NOTES:
- JWT payloads are never logged
- Bearer token is the primary auth method (SPA-friendly, no CSRF needed)
- Session cookies are supported but Bearer is preferred
"""

from typing import Annotated
from fastapi import Depends, Request, Cookie
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError, jwt
from datetime import timedelta
import logging

from crm_api.database import get_db
from crm_api.config import settings
from crm_api.exceptions import UnauthorizedError, ForbiddenError
from crm_api.models.user import User
from crm_api.services.campaign_delivery import CampaignDeliveryService
from crm_api.services.delivery_outcomes import DeliveryOutcomeRecorder
from crm_api.services.segment_ai_service import SegmentAIService
from crm_api.services.vendor_simulator import DeliverySimulator
from crm_api.tasks.queue_drain import QueueDrainLoop
from crm_api.utils.time import utcnow

logger = logging.getLogger(__name__)


# HTTP Bearer for JWT - primary auth method
security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session_token: Annotated[str | None, Cookie(alias="session")] = None,
) -> User:
    """
    Get current user from JWT token or session cookie.

    The user's id is the owner every customer, segment and campaign
    query is scoped by.
    """
    credentials_exception = UnauthorizedError()

    token = None
    auth_method = None

    if credentials:
        token = credentials.credentials
        auth_method = "bearer"
    elif session_token:
        token = session_token
        auth_method = "cookie"

    if not token:
        raise credentials_exception

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        sub = payload.get("sub")
        if sub is None:
            raise credentials_exception
        user_id = int(sub)
    except JWTError:
        # SECURITY: Don't log token decode errors with details
        logger.warning("JWT validation failed", extra={"auth_method": auth_method})
        raise credentials_exception
    except ValueError:
        logger.warning("Invalid token format", extra={"auth_method": auth_method})
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise ForbiddenError("User account is disabled")

    logger.debug("User authenticated", extra={"user_id": user.id, "auth_method": auth_method})
    return user


def get_recorder(request: Request) -> DeliveryOutcomeRecorder:
    return request.app.state.recorder


def get_simulator(request: Request) -> DeliverySimulator:
    return request.app.state.simulator


def get_queue(request: Request) -> QueueDrainLoop:
    return request.app.state.queue


def get_delivery_service(request: Request) -> CampaignDeliveryService:
    return request.app.state.delivery_service


def get_ai_service(request: Request) -> SegmentAIService:
    return request.app.state.ai_service


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
Recorder = Annotated[DeliveryOutcomeRecorder, Depends(get_recorder)]
Simulator = Annotated[DeliverySimulator, Depends(get_simulator)]
Queue = Annotated[QueueDrainLoop, Depends(get_queue)]
DeliveryService = Annotated[CampaignDeliveryService, Depends(get_delivery_service)]
AIService = Annotated[SegmentAIService, Depends(get_ai_service)]
