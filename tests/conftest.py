import random

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from crm_api.main import app
from crm_api.database import Base, get_db
from crm_api.api.deps import create_access_token
from crm_api.models.user import User
from crm_api.services.ai_gateway import AIGateway, AIGatewayConfig
from crm_api.services.campaign_delivery import CampaignDeliveryService
from crm_api.services.delivery_outcomes import DeliveryOutcomeRecorder
from crm_api.services.segment_ai_service import SegmentAIService
from crm_api.services.vendor_simulator import DeliverySimulator
from crm_api.tasks.queue_drain import QueueDrainLoop

NO_DELAY = (0.0, 0.0)


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """SQLite database file private to one test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(test_session_maker):
    """Create test database session."""
    async with test_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def test_user(test_db: AsyncSession):
    """Create a test user."""
    user = User(email="test@example.com", name="Test User", is_active=True)
    test_db.add(user)
    await test_db.commit()
    await test_db.refresh(user)
    return user


@pytest_asyncio.fixture
async def other_user(test_db: AsyncSession):
    """A second account, for ownership checks."""
    user = User(email="other@example.com", name="Other User", is_active=True)
    test_db.add(user)
    await test_db.commit()
    await test_db.refresh(user)
    return user


@pytest.fixture
def recorder(test_session_maker):
    return DeliveryOutcomeRecorder(test_session_maker)


@pytest.fixture
def simulator(recorder):
    """Simulator with no delays and a seeded random source."""
    return DeliverySimulator(
        recorder,
        latency=NO_DELAY,
        sent_receipt_delay=NO_DELAY,
        failed_receipt_delay=NO_DELAY,
        rng=random.Random(42),
    )


@pytest.fixture
def queue(test_session_maker, simulator, recorder):
    return QueueDrainLoop(test_session_maker, simulator, recorder, processing_delay=0.0)


@pytest.fixture
def delivery_service(simulator, queue, recorder):
    return CampaignDeliveryService(simulator, queue, recorder, mode="queue")


@pytest.fixture
def ai_service():
    """AI service without a provider, so every call takes the fallback path."""
    return SegmentAIService(AIGateway(AIGatewayConfig(api_key=None)))


@pytest_asyncio.fixture
async def client(test_db: AsyncSession, recorder, simulator, queue, delivery_service, ai_service):
    """Create test client with overridden database and injected services."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.state.recorder = recorder
    app.state.simulator = simulator
    app.state.queue = queue
    app.state.delivery_service = delivery_service
    app.state.ai_service = ai_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await simulator.wait_until_idle()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(client: AsyncClient, test_user: User):
    """Create authenticated test client."""
    token = create_access_token({"sub": str(test_user.id), "email": test_user.email})
    client.headers["Authorization"] = f"Bearer {token}"
    return client


@pytest.fixture
def add_delivery_records(test_db: AsyncSession, test_user: User):
    """Insert a matching SentMessage/CommunicationLog pair for a message id."""
    from crm_api.models.communication_log import CommunicationLog, DeliveryStatus
    from crm_api.models.sent_message import SentMessage

    async def _add(message_id, status=DeliveryStatus.PENDING, campaign_id=None, customer_id=None):
        test_db.add_all([
            SentMessage(
                user_id=test_user.id,
                recipient_email=f"{message_id}@example.com",
                subject="Subject",
                text_content="Body",
                status=status.value,
                message_id=message_id,
                campaign_id=campaign_id,
            ),
            CommunicationLog(
                user_id=test_user.id,
                campaign_id=campaign_id,
                customer_id=customer_id,
                status=status.value,
                message="Body",
                vendor_message_id=message_id,
            ),
        ])
        await test_db.commit()

    return _add


@pytest.fixture
def add_customers(test_db: AsyncSession, test_user: User):
    """Insert customers for the test user from keyword dicts."""
    from crm_api.models.customer import Customer

    async def _add(*specs, owner_id=None):
        customers = []
        for n, spec in enumerate(specs):
            data = {"name": f"Customer {n}", "email": f"customer{n}@example.com"}
            data.update(spec)
            customers.append(Customer(user_id=owner_id or test_user.id, **data))
        test_db.add_all(customers)
        await test_db.commit()
        return customers

    return _add


@pytest.fixture
def add_segment(test_db: AsyncSession, test_user: User):
    """Insert an unpopulated segment for the test user."""
    from crm_api.models.segment import Segment

    async def _add(rules, name="Test Segment", owner_id=None):
        segment = Segment(
            user_id=owner_id or test_user.id,
            name=name,
            rules_json=rules,
            customer_ids=[],
            customer_count=0,
        )
        test_db.add(segment)
        await test_db.commit()
        await test_db.refresh(segment)
        return segment

    return _add
