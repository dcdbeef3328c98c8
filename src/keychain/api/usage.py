"""Usage endpoints — quota checks, metered consumption, counters and resets."""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.api.deps import Identity, authorize_scope, get_current_identity
from keychain.dal import (
    UsageEvent,
    can_consume,
    get_owner_plan_id,
    get_rate_limit,
    read_latest,
    record_usage,
    reset_counter,
)
from keychain.database import get_db
from keychain.models.base import utcnow
from keychain.models.enums import Granularity, RateMetric
from keychain.periods import period_start
from keychain.scope import OwnerScope

router = APIRouter(prefix="/v1/usage", tags=["usage"])


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------

class ScopeIn(BaseModel):
    profile_id: uuid.UUID | None = None
    organization_id: uuid.UUID | None = None
    project_id: uuid.UUID | None = None

    def to_scope(self) -> OwnerScope:
        return OwnerScope.resolve(
            profile_id=self.profile_id,
            organization_id=self.organization_id,
            project_id=self.project_id,
        )


class UsageIn(ScopeIn):
    metric: RateMetric
    granularity: Granularity
    quantity: int = Field(default=1, ge=1)


class ResetIn(ScopeIn):
    metric: RateMetric
    granularity: Granularity


class CheckOut(BaseModel):
    allowed: bool


class ConsumeOut(BaseModel):
    record_id: str
    recorded_at: datetime
    period_start: datetime


class CounterOut(BaseModel):
    scope: str
    metric: RateMetric
    granularity: Granularity
    period_start: datetime
    quantity: int
    limit: int | None = None


class ResetOut(BaseModel):
    buckets_reset: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/check", response_model=CheckOut)
async def check_usage(
    payload: UsageIn,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> CheckOut:
    scope = payload.to_scope()
    await authorize_scope(db, identity, scope)
    allowed = await can_consume(db, scope, payload.metric, payload.granularity, payload.quantity)
    return CheckOut(allowed=allowed)


@router.post("/consume", response_model=ConsumeOut, status_code=status.HTTP_201_CREATED)
async def consume_usage(
    payload: UsageIn,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ConsumeOut:
    """Admit and record usage in one call. Denied requests get 429 and record nothing."""
    scope = payload.to_scope()
    await authorize_scope(db, identity, scope)

    if not await can_consume(db, scope, payload.metric, payload.granularity, payload.quantity):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=(
                f"Quota exceeded for {payload.metric.value} per "
                f"{payload.granularity.value}."
            ),
        )

    record = await record_usage(
        db,
        UsageEvent(
            scope=scope,
            metric=payload.metric,
            granularity=payload.granularity,
            quantity=payload.quantity,
            api_key_id=identity.api_key_id,
        ),
    )
    return ConsumeOut(
        record_id=str(record.id),
        recorded_at=record.recorded_at,
        period_start=period_start(record.recorded_at, payload.granularity),
    )


@router.get("/counters", response_model=CounterOut)
async def get_counter(
    metric: RateMetric,
    granularity: Granularity,
    profile_id: uuid.UUID | None = Query(default=None),
    organization_id: uuid.UUID | None = Query(default=None),
    project_id: uuid.UUID | None = Query(default=None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> CounterOut:
    """Counter of the current period bucket plus the limit that applies to it."""
    scope = OwnerScope.resolve(
        profile_id=profile_id, organization_id=organization_id, project_id=project_id
    )
    await authorize_scope(db, identity, scope)

    bucket = period_start(utcnow(), granularity)
    snapshot = await read_latest(db, scope, metric, granularity, period_start=bucket)

    limit = None
    plan_id = await get_owner_plan_id(db, scope)
    if plan_id is not None:
        limit = await get_rate_limit(db, plan_id, metric, granularity)

    return CounterOut(
        scope=str(scope),
        metric=metric,
        granularity=granularity,
        period_start=bucket,
        quantity=snapshot.quantity,
        limit=limit,
    )


@router.post("/reset", response_model=ResetOut)
async def reset_usage(
    payload: ResetIn,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ResetOut:
    scope = payload.to_scope()
    await authorize_scope(db, identity, scope)
    touched = await reset_counter(db, scope, payload.metric, payload.granularity)
    return ResetOut(buckets_reset=touched)
