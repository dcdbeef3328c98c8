"""Plan and tier lookup.

Absence of configuration is permissive here: an owner without a plan, or a
plan without a limit row, is unmetered. The one hard failure is a missing
default plan, which means the catalog was never seeded.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.database import transaction
from keychain.errors import InvalidScopeError, OwnerNotFoundError, PlanNotFoundError
from keychain.models.base import utcnow
from keychain.models.enums import Granularity, OwnerKind, PlanType, RateMetric, Tier
from keychain.models.owner import Organization, Profile, Project
from keychain.models.plan import Plan, RateLimit
from keychain.scope import OwnerScope

logger = logging.getLogger(__name__)


class PlanFeatures(BaseModel):
    """Typed view of a plan's attributes, validated when a plan is applied.

    The dedicated columns win over same-named keys in the ``features`` JSON;
    any other key in the JSON must be declared here.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    starting_credit: Decimal = Decimal("0")
    monthly_credit: Decimal = Decimal("0")
    tier: Tier = Tier.FREE
    max_projects: int | None = None
    max_seats: int | None = None

    @classmethod
    def from_plan(cls, plan: Plan) -> PlanFeatures:
        return cls(
            **{
                **(plan.features or {}),
                "starting_credit": plan.starting_credit,
                "monthly_credit": plan.monthly_credit,
                "tier": plan.tier,
            }
        )


def _owner_model(scope: OwnerScope) -> type[Profile] | type[Organization]:
    if scope.kind is OwnerKind.PROFILE:
        return Profile
    if scope.kind is OwnerKind.ORGANIZATION:
        return Organization
    raise InvalidScopeError(
        f"Invalid owner scope kind for plan ownership: {scope.kind.value}",
        {"scope": str(scope)},
    )


async def get_project_owner(db: AsyncSession, project_id: uuid.UUID) -> OwnerScope | None:
    """Return the profile or organization that owns a project, if it exists."""
    result = await db.execute(
        select(Project.profile_id, Project.organization_id).where(Project.id == project_id)
    )
    row = result.one_or_none()
    if row is None:
        return None
    return OwnerScope.resolve(profile_id=row.profile_id, organization_id=row.organization_id)


async def get_plan_id(
    db: AsyncSession,
    scope: OwnerScope,
    allow_project_fallback: bool = False,
) -> uuid.UUID | None:
    """Active plan id of a profile or organization; ``None`` when unassigned."""
    if scope.kind is OwnerKind.PROJECT:
        if not allow_project_fallback:
            raise InvalidScopeError(
                f"Invalid owner scope kind: {scope.kind.value}", {"scope": str(scope)}
            )
        # TODO: resolve through the owning profile/organization once projects
        # can carry their own billing; until then project scopes are unmetered.
        logger.warning("plan.project_scope_unresolved scope=%s", scope)
        return None

    model = _owner_model(scope)
    result = await db.execute(select(model.active_plan_id).where(model.id == scope.id).limit(1))
    return result.scalar_one_or_none()


async def get_owner_plan_id(db: AsyncSession, scope: OwnerScope) -> uuid.UUID | None:
    """Plan id used for quota decisions; ``None`` means unlimited."""
    plan_id = await get_plan_id(db, scope, allow_project_fallback=True)
    logger.debug("plan.resolved scope=%s plan_id=%s", scope, plan_id)
    return plan_id


async def get_owner_tier(db: AsyncSession, scope: OwnerScope) -> Tier:
    """Tier of the owner; a project answers with its owner's tier. Defaults to free."""
    owner: OwnerScope | None = scope
    if scope.kind is OwnerKind.PROJECT:
        owner = await get_project_owner(db, scope.id)
        if owner is None:
            return Tier.FREE

    model = _owner_model(owner)
    result = await db.execute(select(model.tier).where(model.id == owner.id).limit(1))
    return result.scalar_one_or_none() or Tier.FREE


async def get_rate_limit(
    db: AsyncSession,
    plan_id: uuid.UUID,
    metric: RateMetric,
    granularity: Granularity,
) -> int | None:
    """Configured limit value, or ``None`` when the plan has no row for it."""
    result = await db.execute(
        select(RateLimit.value)
        .where(
            RateLimit.plan_id == plan_id,
            RateLimit.metric == metric,
            RateLimit.granularity == granularity,
        )
        .limit(1)
    )
    value = result.scalar_one_or_none()
    return None if value is None else int(value)


async def fetch_owner_plan(
    db: AsyncSession,
    override_id: uuid.UUID | str | None,
    plan_type: PlanType | str,
) -> Plan:
    """Plan by id, or the default plan of ``plan_type`` when no override is given."""
    plan_type = PlanType(plan_type)
    label = str(override_id) if override_id else f"default({plan_type.value})"

    if override_id:
        try:
            plan_id = override_id if isinstance(override_id, uuid.UUID) else uuid.UUID(str(override_id))
        except ValueError:
            raise PlanNotFoundError(f"fetch_owner_plan failed: Record not found ({label})") from None
        stmt = select(Plan).where(Plan.id == plan_id)
    else:
        stmt = select(Plan).where(Plan.type == plan_type, Plan.is_default.is_(True))

    plan = (await db.execute(stmt.limit(1))).scalar_one_or_none()
    if plan is None:
        raise PlanNotFoundError(
            f"fetch_owner_plan failed: Record not found ({label})",
            {"override_id": str(override_id) if override_id else None, "plan_type": plan_type.value},
        )
    return plan


async def fetch_all_plans(db: AsyncSession) -> dict[str, dict[uuid.UUID, Plan]]:
    """Currently available plans, keyed by plan type value then plan id."""
    result = await db.execute(
        select(Plan).where(Plan.currently_available.is_(True)).order_by(Plan.name)
    )
    plans: dict[str, dict[uuid.UUID, Plan]] = {t.value: {} for t in PlanType}
    for plan in result.scalars().all():
        plans[plan.type.value][plan.id] = plan
    return plans


async def apply_plan_to_owner(db: AsyncSession, scope: OwnerScope, plan: Plan) -> None:
    """Switch an owner to ``plan``: plan id, tier, and credit reset to the starting credit."""
    model = _owner_model(scope)
    features = PlanFeatures.from_plan(plan)

    async with transaction(db):
        result = await db.execute(
            update(model)
            .where(model.id == scope.id)
            .values(
                active_plan_id=plan.id,
                tier=features.tier,
                credit_balance=features.starting_credit,
                updated_at=utcnow(),
            )
        )
        if result.rowcount == 0:
            raise OwnerNotFoundError(
                f"apply_plan_to_owner failed: owner not found ({scope})", {"scope": str(scope)}
            )

    logger.info("plan.applied scope=%s plan_id=%s tier=%s", scope, plan.id, features.tier.value)
