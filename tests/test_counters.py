"""Tests for the counter store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.dal import list_counters, read_latest, reset_counter, upsert_increment
from keychain.database import transaction
from keychain.errors import TransactionFailure
from keychain.models import Granularity, Profile, RateMetric, UsageCounter
from keychain.periods import ALL_TIME_EPOCH
from keychain.scope import OwnerScope

DAY_1 = datetime(2024, 5, 17, tzinfo=timezone.utc)
DAY_2 = datetime(2024, 5, 18, tzinfo=timezone.utc)


async def _increment(db: AsyncSession, scope: OwnerScope, bucket: datetime, delta: int,
                     metric: RateMetric = RateMetric.API_REQUESTS,
                     granularity: Granularity = Granularity.DAY) -> None:
    async with transaction(db):
        await upsert_increment(db, scope, metric, granularity, bucket, delta)


async def _row_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(UsageCounter))).scalar_one()


@pytest.mark.asyncio
async def test_upsert_creates_then_increments(db_session: AsyncSession, profile: Profile):
    scope = OwnerScope.profile(profile.id)
    await _increment(db_session, scope, DAY_1, 3)
    await _increment(db_session, scope, DAY_1, 4)

    snapshot = await read_latest(db_session, scope, "api_requests", "day")
    assert snapshot.quantity == 7
    assert snapshot.exists
    assert await _row_count(db_session) == 1


@pytest.mark.asyncio
async def test_buckets_are_distinct(db_session: AsyncSession, profile: Profile):
    scope = OwnerScope.profile(profile.id)
    await _increment(db_session, scope, DAY_1, 5)
    await _increment(db_session, scope, DAY_2, 1)
    await _increment(db_session, scope, DAY_1, 2, granularity=Granularity.MONTH)
    await _increment(db_session, scope, DAY_1, 2, metric=RateMetric.API_TOKENS)

    assert await _row_count(db_session) == 4
    pinned = await read_latest(db_session, scope, "api_requests", "day", period_start=DAY_1)
    assert pinned.quantity == 5


@pytest.mark.asyncio
async def test_scopes_do_not_share_buckets(db_session: AsyncSession):
    first = OwnerScope.project(uuid.uuid4())
    second = OwnerScope.organization(uuid.uuid4())
    await _increment(db_session, first, ALL_TIME_EPOCH, 1, granularity=Granularity.ALL_TIME)
    await _increment(db_session, second, ALL_TIME_EPOCH, 9, granularity=Granularity.ALL_TIME)

    assert (await read_latest(db_session, first, "api_requests", "all_time")).quantity == 1
    assert (await read_latest(db_session, second, "api_requests", "all_time")).quantity == 9


@pytest.mark.asyncio
async def test_owner_id_mirrors_owner_column(db_session: AsyncSession):
    scope = OwnerScope.project(uuid.uuid4())
    await _increment(db_session, scope, DAY_1, 1)

    counter = (await db_session.execute(select(UsageCounter))).scalar_one()
    assert counter.owner_id == scope.id
    assert counter.project_id == scope.id
    assert counter.profile_id is None
    assert counter.organization_id is None


@pytest.mark.asyncio
async def test_read_latest_absent(db_session: AsyncSession):
    snapshot = await read_latest(db_session, OwnerScope.profile(uuid.uuid4()), "api_tokens", "month")
    assert snapshot.quantity == 0
    assert not snapshot.exists
    assert snapshot.period_start is None


@pytest.mark.asyncio
async def test_read_latest_picks_most_recent_update(db_session: AsyncSession, profile: Profile):
    scope = OwnerScope.profile(profile.id)
    await _increment(db_session, scope, DAY_2, 8)
    await _increment(db_session, scope, DAY_1, 3)

    latest = await read_latest(db_session, scope, "api_requests", "day")
    assert latest.quantity == 3


@pytest.mark.asyncio
async def test_reset_zeroes_all_buckets(db_session: AsyncSession, profile: Profile):
    scope = OwnerScope.profile(profile.id)
    await _increment(db_session, scope, DAY_1, 40)
    await _increment(db_session, scope, DAY_2, 60)
    await _increment(db_session, scope, DAY_2, 5, granularity=Granularity.MONTH)

    touched = await reset_counter(db_session, scope, "api_requests", "day")
    assert touched == 2
    assert (await read_latest(db_session, scope, "api_requests", "day", period_start=DAY_2)).quantity == 0
    # Other granularities are untouched
    assert (await read_latest(db_session, scope, "api_requests", "month")).quantity == 5


@pytest.mark.asyncio
async def test_reset_without_counters(db_session: AsyncSession):
    assert await reset_counter(db_session, OwnerScope.profile(uuid.uuid4()), "api_requests", "day") == 0


@pytest.mark.asyncio
async def test_list_counters(db_session: AsyncSession, profile: Profile):
    scope = OwnerScope.profile(profile.id)
    await _increment(db_session, scope, DAY_1, 1)
    await _increment(db_session, scope, DAY_2, 2)
    await _increment(db_session, scope, DAY_2, 3, metric=RateMetric.API_TOKENS)

    counters = await list_counters(db_session, scope)
    assert len(counters) == 3
    assert counters[0].period_start.date() == DAY_2.date()

    tokens = await list_counters(db_session, scope, metric="api_tokens")
    assert [c.quantity for c in tokens] == [3]


def _counter(**owners) -> UsageCounter:
    return UsageCounter(
        metric=RateMetric.API_REQUESTS,
        granularity=Granularity.DAY,
        period_start=DAY_1,
        quantity=1,
        **owners,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "build",
    [
        # two owner columns set
        lambda a, b: _counter(profile_id=a, organization_id=b, owner_id=a),
        # owner_id disagrees with the owner column
        lambda a, b: _counter(profile_id=a, owner_id=b),
        # no owner column at all
        lambda a, b: _counter(owner_id=a),
    ],
    ids=["two-owners", "owner-id-mismatch", "no-owner"],
)
async def test_counter_row_owner_checks(db_session: AsyncSession, build):
    row = build(uuid.uuid4(), uuid.uuid4())
    with pytest.raises(TransactionFailure) as exc_info:
        async with transaction(db_session):
            db_session.add(row)
            await db_session.flush()
    assert exc_info.value.transient is False
    assert await _row_count(db_session) == 0
