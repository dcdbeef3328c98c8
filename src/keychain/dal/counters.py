"""Counter store — one row per (owner, metric, granularity, period bucket)."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.database import transaction
from keychain.models.base import utcnow
from keychain.models.enums import Granularity, RateMetric
from keychain.models.usage import UsageCounter
from keychain.periods import parse_granularity, parse_metric
from keychain.scope import OwnerScope

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

_BUCKET_KEY = ["owner_id", "metric", "granularity", "period_start"]


@dataclass(frozen=True)
class CounterSnapshot:
    """Point-in-time view of a counter bucket. ``quantity == 0`` when none exists."""

    quantity: int = 0
    period_start: datetime | None = None
    updated_at: datetime | None = None

    @property
    def exists(self) -> bool:
        return self.updated_at is not None


def _owner_filter(scope: OwnerScope):
    return getattr(UsageCounter, scope.column) == scope.id


async def upsert_increment(
    db: AsyncSession,
    scope: OwnerScope,
    metric: RateMetric,
    granularity: Granularity,
    period_start: datetime,
    delta: int,
) -> None:
    """Create the bucket with ``delta`` or add ``delta`` to it, in one statement.

    The increment is evaluated by the storage engine (INSERT ... ON CONFLICT
    DO UPDATE), so concurrent writers to the same bucket never lose updates.
    Callers own the transaction.
    """
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"atomic counter upsert is not supported on {dialect!r}")

    now = utcnow()
    stmt = insert(UsageCounter).values(
        id=uuid.uuid4(),
        owner_id=scope.id,
        metric=metric,
        granularity=granularity,
        period_start=period_start,
        quantity=delta,
        updated_at=now,
        **scope.owner_columns(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=_BUCKET_KEY,
        set_={
            "quantity": UsageCounter.quantity + stmt.excluded.quantity,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)


async def reset_counter(
    db: AsyncSession,
    scope: OwnerScope,
    metric: RateMetric | str,
    granularity: Granularity | str,
) -> int:
    """Zero every bucket for (scope, metric, granularity). Returns buckets touched."""
    metric = parse_metric(metric)
    granularity = parse_granularity(granularity)

    async with transaction(db):
        result = await db.execute(
            update(UsageCounter)
            .where(
                _owner_filter(scope),
                UsageCounter.metric == metric,
                UsageCounter.granularity == granularity,
            )
            .values(quantity=0, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    logger.info(
        "counter.reset scope=%s metric=%s granularity=%s buckets=%d",
        scope, metric.value, granularity.value, result.rowcount,
    )
    return result.rowcount


async def read_latest(
    db: AsyncSession,
    scope: OwnerScope,
    metric: RateMetric | str,
    granularity: Granularity | str,
    period_start: datetime | None = None,
) -> CounterSnapshot:
    """Most recently updated counter for the key, optionally pinned to one bucket."""
    stmt = select(UsageCounter).where(
        _owner_filter(scope),
        UsageCounter.metric == parse_metric(metric),
        UsageCounter.granularity == parse_granularity(granularity),
    )
    if period_start is not None:
        stmt = stmt.where(UsageCounter.period_start == period_start)

    result = await db.execute(stmt.order_by(UsageCounter.updated_at.desc()).limit(1))
    counter = result.scalar_one_or_none()
    if counter is None:
        return CounterSnapshot()
    return CounterSnapshot(
        quantity=int(counter.quantity),
        period_start=counter.period_start,
        updated_at=counter.updated_at,
    )


async def list_counters(
    db: AsyncSession,
    scope: OwnerScope,
    metric: RateMetric | str | None = None,
) -> list[UsageCounter]:
    """All buckets of a scope, newest bucket first."""
    stmt = select(UsageCounter).where(_owner_filter(scope))
    if metric is not None:
        stmt = stmt.where(UsageCounter.metric == parse_metric(metric))
    result = await db.execute(
        stmt.order_by(UsageCounter.period_start.desc(), UsageCounter.granularity)
    )
    return list(result.scalars().all())
