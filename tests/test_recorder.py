"""Tests for the transactional usage recorder."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone

import pytest
from asyncpg.exceptions import DeadlockDetectedError
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.dal import list_usage_records, read_latest, record_usage
from keychain.dal.recorder import UsageEvent
from keychain.database import transaction
from keychain.errors import InvalidGranularityError, InvalidMetricError, TransactionFailure
from keychain.models import Granularity, Profile, RateMetric, UsageCounter, UsageRecord
from keychain.scope import OwnerScope

NOW = datetime(2024, 5, 17, 13, 45, 10, tzinfo=timezone.utc)


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


def _event(scope: OwnerScope, quantity: int = 1, **kwargs) -> UsageEvent:
    return UsageEvent(
        scope=scope,
        metric=kwargs.pop("metric", "api_requests"),
        granularity=kwargs.pop("granularity", "day"),
        quantity=quantity,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_records_audit_row_and_counter(db_session: AsyncSession, profile: Profile):
    scope = OwnerScope.profile(profile.id)
    for _ in range(3):
        await record_usage(db_session, _event(scope, 2), now=NOW)

    assert await _count(db_session, UsageRecord) == 3
    counter = await read_latest(db_session, scope, "api_requests", "day")
    assert counter.quantity == 6
    assert counter.period_start.date() == NOW.date()


@pytest.mark.asyncio
async def test_audit_row_fields(db_session: AsyncSession, profile: Profile):
    scope = OwnerScope.profile(profile.id)
    record = await record_usage(
        db_session,
        _event(scope, 5, metric=RateMetric.API_TOKENS, granularity=Granularity.MONTH),
        now=NOW,
    )

    records = await list_usage_records(db_session, scope)
    assert [r.id for r in records] == [record.id]
    stored = records[0]
    assert stored.profile_id == profile.id
    assert stored.organization_id is None
    assert stored.project_id is None
    assert stored.metric is RateMetric.API_TOKENS
    assert stored.granularity is Granularity.MONTH
    assert stored.quantity == 5
    assert stored.api_key_id is None


@pytest.mark.asyncio
async def test_invalid_granularity_writes_nothing(db_session: AsyncSession, profile: Profile):
    scope = OwnerScope.profile(profile.id)
    with pytest.raises(InvalidGranularityError):
        await record_usage(db_session, _event(scope, granularity="week"), now=NOW)
    with pytest.raises(InvalidMetricError):
        await record_usage(db_session, _event(scope, metric="gpu_seconds"), now=NOW)

    assert await _count(db_session, UsageRecord) == 0
    assert await _count(db_session, UsageCounter) == 0


@pytest.mark.asyncio
async def test_negative_quantity_rejected(db_session: AsyncSession, profile: Profile):
    with pytest.raises(ValueError):
        await record_usage(db_session, _event(OwnerScope.profile(profile.id), -1), now=NOW)


@pytest.mark.asyncio
async def test_counter_failure_rolls_back_audit_row(
    db_session: AsyncSession, profile: Profile, monkeypatch: pytest.MonkeyPatch
):
    async def _locked(*args, **kwargs):
        raise OperationalError("INSERT INTO usage_counters", {}, Exception("database is locked"))

    monkeypatch.setattr("keychain.dal.recorder.upsert_increment", _locked)

    with pytest.raises(TransactionFailure) as exc_info:
        await record_usage(db_session, _event(OwnerScope.profile(profile.id)), now=NOW)
    assert exc_info.value.transient is True

    assert await _count(db_session, UsageRecord) == 0


class _PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


@pytest.mark.asyncio
async def test_deadlock_is_transient(
    db_session: AsyncSession, profile: Profile, monkeypatch: pytest.MonkeyPatch
):
    """asyncpg reports deadlocks as a generic DBAPIError carrying SQLSTATE 40P01."""

    async def _deadlock(*args, **kwargs):
        raise DBAPIError(
            "INSERT INTO usage_counters", {}, DeadlockDetectedError("deadlock detected")
        )

    monkeypatch.setattr("keychain.dal.recorder.upsert_increment", _deadlock)

    with pytest.raises(TransactionFailure) as exc_info:
        await record_usage(db_session, _event(OwnerScope.profile(profile.id)), now=NOW)
    assert exc_info.value.transient is True
    assert await _count(db_session, UsageRecord) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("sqlstate", "transient"),
    [("40001", True), ("55P03", True), ("42P01", False)],
)
async def test_sqlstate_decides_transient(
    db_session: AsyncSession, sqlstate: str, transient: bool
):
    with pytest.raises(TransactionFailure) as exc_info:
        async with transaction(db_session):
            raise DBAPIError("UPDATE usage_counters", {}, _PgError(sqlstate))
    assert exc_info.value.transient is transient


@pytest.mark.asyncio
async def test_nested_in_caller_transaction(db_session: AsyncSession, profile: Profile):
    """Inside an open transaction the recorder uses a savepoint and the caller decides."""
    scope = OwnerScope.profile(profile.id)
    await db_session.execute(select(1))
    assert db_session.in_transaction()

    await record_usage(db_session, _event(scope), now=NOW)
    assert await _count(db_session, UsageRecord) == 1

    await db_session.rollback()
    assert await _count(db_session, UsageRecord) == 0
    assert (await read_latest(db_session, scope, "api_requests", "day")).quantity == 0


@pytest.mark.asyncio
async def test_two_owner_row_rejected(db_session: AsyncSession):
    row = UsageRecord(
        profile_id=uuid.uuid4(),
        organization_id=uuid.uuid4(),
        metric=RateMetric.API_REQUESTS,
        granularity=Granularity.DAY,
        quantity=1,
        recorded_at=NOW,
    )
    with pytest.raises(TransactionFailure) as exc_info:
        async with transaction(db_session):
            db_session.add(row)
            await db_session.flush()
    assert exc_info.value.transient is False


@pytest.mark.asyncio
async def test_ownerless_row_rejected(db_session: AsyncSession):
    row = UsageRecord(
        metric=RateMetric.API_REQUESTS,
        granularity=Granularity.DAY,
        quantity=1,
        recorded_at=NOW,
    )
    with pytest.raises(TransactionFailure) as exc_info:
        async with transaction(db_session):
            db_session.add(row)
            await db_session.flush()
    assert exc_info.value.transient is False
    assert await _count(db_session, UsageRecord) == 0


@pytest.mark.asyncio
async def test_concurrent_records_are_not_lost(session_factory, profile: Profile):
    """Ten writers on a fresh bucket, each in its own session, end at exactly ten."""
    scope = OwnerScope.profile(profile.id)

    async def _one() -> None:
        async with session_factory() as session:
            await record_usage(session, _event(scope), now=NOW)

    await asyncio.gather(*(_one() for _ in range(10)))

    async with session_factory() as session:
        assert (await read_latest(session, scope, "api_requests", "day")).quantity == 10
        assert await _count(session, UsageRecord) == 10
        assert await _count(session, UsageCounter) == 1
