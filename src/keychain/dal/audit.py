"""Usage audit log. Append-only; quota decisions never read it."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.models.enums import Granularity, RateMetric
from keychain.models.usage import UsageRecord
from keychain.periods import parse_metric
from keychain.scope import OwnerScope


async def append_usage_record(
    db: AsyncSession,
    scope: OwnerScope,
    metric: RateMetric,
    granularity: Granularity,
    quantity: int,
    recorded_at: datetime,
    api_key_id: uuid.UUID | None = None,
) -> UsageRecord:
    """Insert one immutable audit row. Callers own the transaction."""
    record = UsageRecord(
        api_key_id=api_key_id,
        metric=metric,
        granularity=granularity,
        quantity=quantity,
        recorded_at=recorded_at,
        **scope.owner_columns(),
    )
    db.add(record)
    await db.flush()
    return record


async def list_usage_records(
    db: AsyncSession,
    scope: OwnerScope,
    metric: RateMetric | str | None = None,
    limit: int = 100,
) -> list[UsageRecord]:
    """Most recent audit rows for a scope, newest first."""
    stmt = select(UsageRecord).where(getattr(UsageRecord, scope.column) == scope.id)
    if metric is not None:
        stmt = stmt.where(UsageRecord.metric == parse_metric(metric))
    result = await db.execute(stmt.order_by(UsageRecord.recorded_at.desc()).limit(limit))
    return list(result.scalars().all())
