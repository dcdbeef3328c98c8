"""Quota evaluator.

``can_consume`` is a point-in-time check, not a reservation. Two requests
can both be admitted before either records its usage, so an owner may
overshoot a limit by up to (concurrent requests x qty). Billing reconciles
overage after the fact.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from keychain.dal.counters import read_latest
from keychain.dal.plans import get_owner_plan_id, get_rate_limit
from keychain.models.base import utcnow
from keychain.models.enums import Granularity, RateMetric
from keychain.periods import parse_granularity, parse_metric, period_start
from keychain.scope import OwnerScope

logger = logging.getLogger(__name__)


async def can_consume(
    db: AsyncSession,
    scope: OwnerScope,
    metric: RateMetric | str,
    granularity: Granularity | str,
    qty: int = 1,
    *,
    now: datetime | None = None,
) -> bool:
    """Return True if ``qty`` more units fit under the owner's plan limit.

    No plan, no limit row, or a limit of 0 all mean unlimited. Only the
    counter of the current period bucket counts toward the limit.
    """
    metric = parse_metric(metric)
    granularity = parse_granularity(granularity)
    if qty < 1:
        raise ValueError(f"qty must be a positive integer, got {qty}")

    plan_id = await get_owner_plan_id(db, scope)
    if plan_id is None:
        return True

    limit = await get_rate_limit(db, plan_id, metric, granularity)
    if not limit:
        return True

    bucket = period_start(now or utcnow(), granularity)
    current = (await read_latest(db, scope, metric, granularity, period_start=bucket)).quantity

    allowed = current + qty <= limit
    if not allowed:
        logger.info(
            "quota.denied scope=%s metric=%s granularity=%s current=%d qty=%d limit=%d",
            scope, metric.value, granularity.value, current, qty, limit,
        )
    return allowed
