"""YAML plan catalog and the seeder that loads it into the database.

The bundled ``plans.yaml`` ships with the package; deployments can point
``KC_CATALOG_PATH`` at their own file.
"""

from __future__ import annotations

import importlib.resources
import logging
from decimal import Decimal
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.config import settings
from keychain.dal.plans import PlanFeatures
from keychain.database import transaction
from keychain.models.enums import Granularity, PlanType, RateMetric, Tier
from keychain.models.plan import Plan, RateLimit

logger = logging.getLogger(__name__)


class RateLimitSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metric: RateMetric
    granularity: Granularity
    value: int = Field(ge=0)


class PlanSpec(BaseModel):
    """One plan entry of the catalog."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1, max_length=100)
    type: PlanType
    tier: Tier = Tier.FREE
    is_default: bool = Field(default=False, alias="default")
    available: bool = True
    description: str | None = None
    starting_credit: Decimal = Decimal("0")
    monthly_credit: Decimal = Decimal("0")
    features: dict = Field(default_factory=dict)
    rate_limits: list[RateLimitSpec] = Field(default_factory=list)

    @field_validator("features")
    @classmethod
    def validate_features(cls, v: dict) -> dict:
        # Unknown keys are rejected by PlanFeatures
        PlanFeatures(**v)
        return v

    @model_validator(mode="after")
    def unique_limits(self) -> PlanSpec:
        seen: set[tuple[RateMetric, Granularity]] = set()
        for limit in self.rate_limits:
            key = (limit.metric, limit.granularity)
            if key in seen:
                raise ValueError(
                    f"plan {self.name!r} defines {limit.metric.value}/{limit.granularity.value} twice"
                )
            seen.add(key)
        return self


class PlanCatalog(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plans: list[PlanSpec]

    @model_validator(mode="after")
    def one_default_per_type(self) -> PlanCatalog:
        names: set[tuple[PlanType, str]] = set()
        for plan in self.plans:
            if (plan.type, plan.name) in names:
                raise ValueError(f"duplicate {plan.type.value} plan {plan.name!r}")
            names.add((plan.type, plan.name))

        for plan_type in PlanType:
            defaults = [p.name for p in self.plans if p.type is plan_type and p.is_default]
            if len(defaults) != 1:
                raise ValueError(
                    f"catalog must define exactly one default {plan_type.value} plan, "
                    f"found {len(defaults)}: {defaults}"
                )
        return self

    def default_for(self, plan_type: PlanType) -> PlanSpec:
        return next(p for p in self.plans if p.type is plan_type and p.is_default)


def load_catalog(path: str | Path | None = None) -> PlanCatalog:
    """Load and validate a plan catalog.

    Falls back to ``settings.catalog_path`` and then to the bundled catalog.
    Raises ``ValueError`` (pydantic ``ValidationError``) on invalid content.
    """
    path = path or settings.catalog_path or None
    if path is None:
        source = importlib.resources.files("keychain.catalog") / "plans.yaml"
        text = source.read_text(encoding="utf-8")
    else:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()

    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"plan catalog must be a mapping with a 'plans' list, got {type(data).__name__}")
    return PlanCatalog.model_validate(data)


async def seed_plans(db: AsyncSession, catalog: PlanCatalog) -> dict[str, int]:
    """Insert or update every catalog plan, keyed by (type, name).

    Rate limits of each plan are replaced by the catalog's. Plans absent from
    the catalog are left alone apart from losing their default flag.
    """
    created = updated = 0

    async with transaction(db):
        # Clear stale defaults first so the one-default-per-type index holds
        for plan_type in PlanType:
            await db.execute(
                update(Plan)
                .where(
                    Plan.type == plan_type,
                    Plan.is_default.is_(True),
                    Plan.name != catalog.default_for(plan_type).name,
                )
                .values(is_default=False)
            )

        for spec in catalog.plans:
            result = await db.execute(
                select(Plan).where(Plan.type == spec.type, Plan.name == spec.name)
            )
            plan = result.scalar_one_or_none()
            if plan is None:
                plan = Plan(name=spec.name, type=spec.type, rate_limits=[])
                db.add(plan)
                created += 1
            else:
                updated += 1

            plan.description = spec.description
            plan.tier = spec.tier
            plan.is_default = spec.is_default
            plan.currently_available = spec.available
            plan.starting_credit = spec.starting_credit
            plan.monthly_credit = spec.monthly_credit
            plan.features = dict(spec.features)
            _sync_rate_limits(plan, spec.rate_limits)

        await db.flush()

    logger.info("catalog.seeded created=%d updated=%d", created, updated)
    return {"created": created, "updated": updated}


def _sync_rate_limits(plan: Plan, specs: list[RateLimitSpec]) -> None:
    wanted = {(s.metric, s.granularity): s.value for s in specs}
    for limit in list(plan.rate_limits):
        key = (limit.metric, limit.granularity)
        if key in wanted:
            limit.value = wanted.pop(key)
        else:
            plan.rate_limits.remove(limit)
    for (metric, granularity), value in wanted.items():
        plan.rate_limits.append(RateLimit(metric=metric, granularity=granularity, value=value))
