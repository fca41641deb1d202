import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardtrader.config import Settings, get_settings
from cardtrader.db.database import build_engine, get_session, init_db
from cardtrader.main import app
from cardtrader.models.db import Base
from cardtrader.services.auth import TokenService
from cardtrader.services.trading import CardLockRegistry


@pytest.fixture
def test_settings() -> Settings:
    """Settings with cheap hashing and no startup seeding."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        starter_card_count=1,
        random_card_count=3,
        allow_unowned_claims=True,
        seed_on_startup=False,
    )


@pytest.fixture
def token_service(test_settings: Settings) -> TokenService:
    return TokenService(secret=test_settings.jwt_secret)


@pytest.fixture
def locks() -> CardLockRegistry:
    return CardLockRegistry()


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def session(async_engine) -> AsyncSession:
    """Provide a database session for tests."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest.fixture
async def client(async_engine, test_settings: Settings):
    """Provide an async test client with overridden database session and settings."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_session():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
