import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OPINION_PROVIDER", "deterministic")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")
os.environ.setdefault("WORKER_CALLBACK_TOKEN", "test-worker-token")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from evalcouncil.db import get_db
from evalcouncil.main import app
from evalcouncil.models import Base, CreditAccount, CreditTransaction, Evaluation
from evalcouncil.routes.promotions import voucher_limiter
from evalcouncil.services import model_configs


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded_models(db):
    await model_configs.seed_default_models(db)
    return await model_configs.list_models(db)


@pytest_asyncio.fixture
async def evaluation(db):
    row = Evaluation(
        url="https://example.com",
        target_demographics={"ageRange": "25-34", "gender": "all", "incomeTier": "medium", "region": "europe"},
        result={"overallScore": 4.1},
        website_snapshot={"productName": "Example", "description": "A product", "keyFeatures": ["fast"]},
        user_id=None,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    voucher_limiter.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def assert_ledger_consistent(session_factory, user_id: str) -> int:
    """The transaction log must sum to the stored balance."""
    async with session_factory() as session:
        balance = (
            await session.execute(select(CreditAccount.balance).where(CreditAccount.user_id == user_id))
        ).scalar_one()
        total = (
            await session.execute(
                select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                    CreditTransaction.user_id == user_id
                )
            )
        ).scalar_one()
    assert total == balance
    return balance


@pytest.fixture
def ledger_check(session_factory):
    async def check(user_id: str) -> int:
        return await assert_ledger_consistent(session_factory, user_id)

    return check
