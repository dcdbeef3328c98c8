"""Shared test fixtures for the Keychain test suite.

Each test gets its own file-backed SQLite database via aiosqlite, so
concurrent sessions see each other's commits the way they would on
PostgreSQL.
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path

# Settings are read at import time; keep the module-level engine off asyncpg
os.environ.setdefault("KC_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keychain.config import settings
from keychain.database import build_engine, init_db
from keychain.models import (
    ApiKey,
    Granularity,
    Organization,
    Plan,
    PlanType,
    Profile,
    Project,
    RateLimit,
    RateMetric,
    Tier,
)


# ---------------------------------------------------------------------------
# Test database
# ---------------------------------------------------------------------------

@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'keychain.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str):
    """Create tables in a fresh database and dispose the engine afterwards."""
    test_engine = build_engine(database_url)
    await init_db(bind=test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Seed data (committed so that other sessions see it)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def free_plan(db_session: AsyncSession) -> Plan:
    """Default individual plan: 100 api_requests/day, unlimited per minute."""
    plan = Plan(
        name="Free",
        type=PlanType.INDIVIDUAL,
        tier=Tier.FREE,
        is_default=True,
        starting_credit=Decimal("5.00"),
        rate_limits=[
            RateLimit(metric=RateMetric.API_REQUESTS, granularity=Granularity.DAY, value=100),
            RateLimit(metric=RateMetric.API_REQUESTS, granularity=Granularity.MINUTE, value=0),
            RateLimit(metric=RateMetric.API_TOKENS, granularity=Granularity.MONTH, value=1000),
        ],
    )
    db_session.add(plan)
    await db_session.commit()
    return plan


@pytest_asyncio.fixture
async def team_plan(db_session: AsyncSession) -> Plan:
    """Default organization plan: 1000 api_requests/day."""
    plan = Plan(
        name="Team",
        type=PlanType.ORGANIZATION,
        tier=Tier.TIER2,
        is_default=True,
        starting_credit=Decimal("50.00"),
        features={"max_seats": 5},
        rate_limits=[
            RateLimit(metric=RateMetric.API_REQUESTS, granularity=Granularity.DAY, value=1000),
        ],
    )
    db_session.add(plan)
    await db_session.commit()
    return plan


@pytest_asyncio.fixture
async def profile(db_session: AsyncSession, free_plan: Plan) -> Profile:
    owner = Profile(email="ada@example.com", tier=Tier.FREE, active_plan_id=free_plan.id)
    db_session.add(owner)
    await db_session.commit()
    return owner


@pytest_asyncio.fixture
async def organization(db_session: AsyncSession, team_plan: Plan, profile: Profile) -> Organization:
    org = Organization(
        name="Analytical Engines",
        slug="analytical-engines",
        tier=Tier.TIER2,
        active_plan_id=team_plan.id,
        created_by=profile.id,
    )
    db_session.add(org)
    await db_session.commit()
    return org


@pytest_asyncio.fixture
async def project(db_session: AsyncSession, organization: Organization) -> Project:
    proj = Project(organization_id=organization.id, name="Difference", slug="difference")
    db_session.add(proj)
    await db_session.commit()
    return proj


@pytest_asyncio.fixture
async def api_key(db_session: AsyncSession, project: Project, profile: Profile) -> str:
    """Create an active API key for the project and return the raw key."""
    raw_key = ApiKey.generate_key()
    key = ApiKey(
        project_id=project.id,
        name="test-key",
        prefix=ApiKey.prefix_of(raw_key),
        hash=ApiKey.hash_key(raw_key, settings.api_key_salt),
        created_by=profile.id,
    )
    db_session.add(key)
    await db_session.commit()
    return raw_key


@pytest.fixture
def auth_headers(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory) -> AsyncClient:
    """httpx AsyncClient wired to the FastAPI app with the test database."""
    from keychain.database import get_db
    from keychain.main import app

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()
