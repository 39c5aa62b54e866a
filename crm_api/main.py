"""
CRM API - Main Application

Owns the long-lived services: the delivery outcome recorder, the
delivery simulator, the queue drain loop, the campaign delivery service
and the AI service. They are built once in the lifespan, stored on
``app.state`` and stopped on shutdown, which flushes every outstanding
delivery receipt.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

from crm_api.api.v2.router import api_router
from crm_api.config import settings
from crm_api.core.sentry import init_sentry
from crm_api.database import init_db, async_session_maker
from crm_api.exceptions import CRMException, create_exception_handlers
from crm_api.middleware.correlation import CorrelationIdMiddleware, CorrelationLogFilter
from crm_api.services.ai_gateway import AIGateway
from crm_api.services.campaign_delivery import CampaignDeliveryService
from crm_api.services.delivery_outcomes import DeliveryOutcomeRecorder
from crm_api.services.segment_ai_service import SegmentAIService
from crm_api.services.vendor_simulator import DeliverySimulator
from crm_api.tasks.queue_drain import QueueDrainLoop

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(CorrelationLogFilter())
logger = logging.getLogger(__name__)

init_sentry()


def build_services(app: FastAPI, session_maker=async_session_maker, scheduler: AsyncIOScheduler | None = None) -> None:
    """Construct the delivery services and attach them to ``app.state``."""
    recorder = DeliveryOutcomeRecorder(session_maker)
    simulator = DeliverySimulator.from_settings(recorder, scheduler)
    queue = QueueDrainLoop.from_settings(session_maker, simulator, recorder, scheduler)

    app.state.scheduler = scheduler
    app.state.recorder = recorder
    app.state.simulator = simulator
    app.state.queue = queue
    app.state.delivery_service = CampaignDeliveryService.from_settings(simulator, queue, recorder)
    app.state.ai_service = SegmentAIService(AIGateway())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting CRM API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    # SECURITY: Don't log full database URL, just prefix
    logger.info(f"Database URL prefix: {settings.DATABASE_URL[:30]}...")

    await init_db()
    logger.info("Database initialized successfully")

    scheduler = AsyncIOScheduler(timezone="UTC")
    build_services(app, async_session_maker, scheduler)

    if settings.BACKGROUND_WORKERS_ENABLED:
        scheduler.start()
        app.state.simulator.start()
        app.state.queue.start()
    else:
        logger.info("Background workers disabled")

    yield

    logger.info("Shutting down CRM API...")
    app.state.queue.stop()
    await app.state.simulator.stop()
    if scheduler.running:
        scheduler.shutdown(wait=False)
    await app.state.ai_service.gateway.close()


# SECURITY: Conditionally enable docs based on settings
docs_url = "/docs" if settings.DOCS_ENABLED else None
redoc_url = "/redoc" if settings.DOCS_ENABLED else None

app = FastAPI(
    title="CRM API",
    description="Customer segmentation, campaign delivery and delivery tracking",
    version=settings.VERSION,
    docs_url=docs_url,
    redoc_url=redoc_url,
    lifespan=lifespan,
)

allowed_origins = [
    settings.FRONTEND_URL,
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",  # Alternative dev port
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

handlers = create_exception_handlers(allowed_origins)
app.add_exception_handler(CRMException, handlers["crm"])
app.add_exception_handler(StarletteHTTPException, handlers["http"])
app.add_exception_handler(RequestValidationError, handlers["validation"])
app.add_exception_handler(Exception, handlers["generic"])

app.include_router(api_router, prefix="/api/v2")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    response = {
        "name": "CRM API",
        "version": settings.VERSION,
        "health": "/health",
    }
    if settings.DOCS_ENABLED:
        response["docs"] = "/docs"
    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crm_api.main:app",
        host="0.0.0.0",
        port=5001,
        reload=settings.DEBUG,
    )
