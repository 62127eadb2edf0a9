# schoolchat/tests/conftest.py
import itertools
import logging
from datetime import timedelta

import pytest
from fakeredis import aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from schoolchat.config import AppConfig
from schoolchat.domain.entities import ThreadStatus, utcnow
from schoolchat.domain.policy import ModerationPolicy
from schoolchat.gateways.message_gateway import MessageGateway
from schoolchat.gateways.thread_gateway import ThreadGateway
from schoolchat.gateways.user_gateway import UserGateway
from schoolchat.infrastructure import models
from schoolchat.infrastructure.database import Base, Database
from schoolchat.infrastructure.event_dispatcher import EventDispatcher
from schoolchat.infrastructure.security import SecurityService
from schoolchat.infrastructure.uow import UnitOfWork
from schoolchat.interactors.message_interactor import MessageInteractor
from schoolchat.interactors.thread_interactor import ThreadInteractor
from schoolchat.main import Application
from schoolchat.tests.doubles import FakeWebSocket, RecordingPushProvider

_names = itertools.count(1)


@pytest.fixture(scope="function")
def app_config():
    """Test configuration with an in-memory SQLite database."""
    return AppConfig(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        REDIS_HOST="localhost",
        REDIS_PORT=6379,
        SECRET_KEY="test_secret_key",
        PROJECT_NAME="Test SchoolChat API",
        API_V1_STR="/api/v1",
        ALGORITHM="HS256",
        ACCESS_TOKEN_EXPIRE_MINUTES=5,
        DELIVERY_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture(scope="function")
def logger():
    return logging.getLogger("SchoolChat.tests")


@pytest.fixture(scope="function")
async def mock_redis():
    """Provide a fake Redis client for testing."""
    redis = aioredis.FakeRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


@pytest.fixture(scope="function")
async def engine(app_config):
    """Create a SQLAlchemy engine for testing with a single shared connection."""
    engine = create_async_engine(
        app_config.DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def database(engine, logger):
    return Database(engine, logger)


@pytest.fixture(scope="function")
async def db_session(database):
    """Provide a SQLAlchemy session for test setup."""
    async with database.session() as session:
        yield session


@pytest.fixture(scope="function")
def uow(db_session):
    return UnitOfWork(db_session)


@pytest.fixture(scope="function")
def push_provider():
    return RecordingPushProvider()


@pytest.fixture(scope="function")
def application(app_config, database, push_provider, mock_redis):
    application = Application(
        config=app_config, database=database, push_provider=push_provider
    )
    application.redis_client.client = mock_redis
    return application


@pytest.fixture(scope="function")
def app(application):
    return application.create_app()


@pytest.fixture(scope="function")
async def client(app):
    """Provide an HTTP client with the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture(scope="function")
def security_service(app_config):
    return SecurityService(app_config)


@pytest.fixture(scope="function")
def policy(app_config):
    return ModerationPolicy.from_config(app_config)


@pytest.fixture(scope="function")
def make_user(db_session):
    """Create users directly in the database; identity is managed elsewhere."""

    async def _make_user(role: str, full_name: str | None = None, is_active: bool = True):
        user = models.User(
            full_name=full_name or f"{role.title()} {next(_names)}",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
async def admin(make_user):
    return await make_user("admin", "Ada Admin")


@pytest.fixture
async def principal(make_user):
    return await make_user("principal", "Pat Principal")


@pytest.fixture
async def teacher(make_user):
    return await make_user("teacher", "Tom Teacher")


@pytest.fixture
async def parent(make_user):
    return await make_user("parent", "Gina Guardian")


@pytest.fixture
async def student(make_user):
    return await make_user("student", "Sam Student")


@pytest.fixture
def auth_header(security_service):
    def _auth_header(user):
        token, _ = security_service.create_access_token(user.id)
        return {"Authorization": f"Bearer {token}"}

    return _auth_header


@pytest.fixture
def settle(app):
    """Wait until every dispatched event handler has finished."""

    async def _settle():
        await app.state.event_dispatcher.drain()

    return _settle


@pytest.fixture
def connect(app):
    """Register a live realtime connection for a user."""

    async def _connect(user, fail: bool = False):
        websocket = FakeWebSocket(fail=fail)
        await app.state.connection_registry.connect(user.id, websocket)
        return websocket

    return _connect


@pytest.fixture
def dispatcher(logger):
    return EventDispatcher(logger, timeout=5.0)


@pytest.fixture
async def interactors(database, policy, dispatcher, logger):
    """Thread and message interactors on their own session.

    A rollback inside the interactors expires everything in their session, so
    they never share one with the user fixtures.
    """
    async with database.session() as session:
        uow = UnitOfWork(session)
        thread_gateway = ThreadGateway(session, uow)
        message_gateway = MessageGateway(session, uow)
        user_gateway = UserGateway(session, uow)
        threads = ThreadInteractor(
            uow, thread_gateway, user_gateway, message_gateway, policy, dispatcher, logger
        )
        messages = MessageInteractor(
            uow, message_gateway, thread_gateway, user_gateway, policy, dispatcher, logger
        )
        yield threads, messages


@pytest.fixture
def legacy_thread(db_session):
    """Insert a thread the way older clients did: no participant key.

    Several of these with the same participants are what concurrent creation
    used to leave behind.
    """

    async def _legacy_thread(users, kind="direct", title=None, age_minutes=0, messages=0):
        at = utcnow() - timedelta(minutes=age_minutes)
        thread = models.Thread(
            kind=kind,
            title=title,
            status=ThreadStatus.ACTIVE.value,
            participant_key=None,
            created_by=users[0].id,
            created_at=at,
            updated_at=at,
        )
        db_session.add(thread)
        await db_session.flush()
        for user in users:
            db_session.add(models.Participant(thread_id=thread.id, user_id=user.id))
        for n in range(messages):
            db_session.add(
                models.Message(
                    thread_id=thread.id,
                    sender_id=users[0].id,
                    content=f"message {n}",
                    created_at=at,
                )
            )
        await db_session.commit()
        return thread

    return _legacy_thread
