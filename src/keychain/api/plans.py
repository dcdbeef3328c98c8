"""Plan endpoints — GET /v1/plans and GET /v1/plans/current."""

from __future__ import annotations

import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.api.deps import Identity, authorize_scope, get_current_identity
from keychain.dal import fetch_all_plans, get_owner_plan_id, get_owner_tier
from keychain.database import get_db
from keychain.models.enums import Granularity, RateMetric, Tier
from keychain.models.plan import Plan
from keychain.scope import OwnerScope

router = APIRouter(prefix="/v1/plans", tags=["plans"])


class RateLimitOut(BaseModel):
    metric: RateMetric
    granularity: Granularity
    value: int


class PlanOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    tier: Tier
    is_default: bool
    starting_credit: Decimal
    monthly_credit: Decimal
    features: dict = Field(default_factory=dict)
    rate_limits: list[RateLimitOut] = Field(default_factory=list)

    @classmethod
    def from_model(cls, plan: Plan) -> PlanOut:
        return cls(
            id=str(plan.id),
            name=plan.name,
            description=plan.description,
            tier=plan.tier,
            is_default=plan.is_default,
            starting_credit=plan.starting_credit,
            monthly_credit=plan.monthly_credit,
            features=plan.features or {},
            rate_limits=[
                RateLimitOut(metric=r.metric, granularity=r.granularity, value=r.value)
                for r in plan.rate_limits
            ],
        )


class CurrentPlanOut(BaseModel):
    scope: str
    plan_id: str | None = None
    tier: Tier


@router.get("", response_model=dict[str, list[PlanOut]])
async def list_plans(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> dict[str, list[PlanOut]]:
    plans = await fetch_all_plans(db)
    return {
        plan_type: [PlanOut.from_model(p) for p in by_id.values()]
        for plan_type, by_id in plans.items()
    }


@router.get("/current", response_model=CurrentPlanOut)
async def current_plan(
    profile_id: uuid.UUID | None = Query(default=None),
    organization_id: uuid.UUID | None = Query(default=None),
    project_id: uuid.UUID | None = Query(default=None),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> CurrentPlanOut:
    scope = OwnerScope.resolve(
        profile_id=profile_id, organization_id=organization_id, project_id=project_id
    )
    await authorize_scope(db, identity, scope)
    plan_id = await get_owner_plan_id(db, scope)
    tier = await get_owner_tier(db, scope)
    return CurrentPlanOut(
        scope=str(scope),
        plan_id=str(plan_id) if plan_id else None,
        tier=tier,
    )
