import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from comment_pipeline.bus.message_bus import DatabaseMessageBus
from comment_pipeline.bus.worker import SubscriptionWorker
from comment_pipeline.config.settings import settings
from comment_pipeline.core.item_store import ItemStore
from comment_pipeline.core.processor import CommentProcessor
from comment_pipeline.models import Base

SUBSCRIBER = "comment-processor"


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """SQLite engine on a per-test database file with all tables created.

    A file (not ``:memory:``) so that concurrent sessions share one database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def store(session_factory):
    return ItemStore(session_factory=session_factory)


@pytest.fixture
def bus(session_factory):
    return DatabaseMessageBus(subscribers=[SUBSCRIBER], session_factory=session_factory)


@pytest.fixture
def processor(store):
    return CommentProcessor(store=store, store_timeout=5.0)


@pytest.fixture
def worker(bus, processor):
    return SubscriptionWorker(
        bus=bus,
        handler=processor.process,
        subscriber=SUBSCRIBER,
        batch_size=10,
        handler_timeout=5.0,
        visibility_timeout=30.0,
        max_attempts=3,
        backoff_seconds=0.0,
        poll_interval=0.01,
    )


@pytest.fixture
def count_rows(session_factory):
    """Returns an async helper counting the rows of an ORM model."""
    async def _count(model) -> int:
        async with session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return result.scalar_one()
    return _count


@pytest.fixture
def app(monkeypatch):
    """A fresh application with the admin routes mounted and no background worker."""
    from comment_pipeline.api.main import create_app

    monkeypatch.setattr(settings, "ADMIN_API_ENABLED", True)
    monkeypatch.setattr(settings, "RUN_PROCESSOR_IN_API", False)
    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    # TrustedHostMiddleware only admits the configured hosts.
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as ac:
        yield ac
