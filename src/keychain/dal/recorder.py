"""Transactional usage recorder."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from keychain.dal.audit import append_usage_record
from keychain.dal.counters import upsert_increment
from keychain.database import transaction
from keychain.models.base import utcnow
from keychain.models.enums import Granularity, RateMetric
from keychain.models.usage import UsageRecord
from keychain.periods import parse_granularity, parse_metric, period_start
from keychain.scope import OwnerScope


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageEvent:
    """A billable event. Metric and granularity may arrive as raw strings."""

    scope: OwnerScope
    metric: RateMetric | str
    granularity: Granularity | str
    quantity: int = 1
    api_key_id: uuid.UUID | None = None


async def record_usage(
    db: AsyncSession,
    event: UsageEvent,
    *,
    now: datetime | None = None,
) -> UsageRecord:
    """Append the audit row and increment the counter bucket atomically.

    Both writes commit together or not at all. Storage failures surface as
    ``TransactionFailure``; nothing is retried here.
    """
    granularity = parse_granularity(event.granularity)
    metric = parse_metric(event.metric)
    if event.quantity < 0:
        raise ValueError(f"quantity must not be negative, got {event.quantity}")

    now = now or utcnow()
    bucket = period_start(now, granularity)

    async with transaction(db):
        record = await append_usage_record(
            db,
            event.scope,
            metric,
            granularity,
            event.quantity,
            recorded_at=now,
            api_key_id=event.api_key_id,
        )
        await upsert_increment(db, event.scope, metric, granularity, bucket, event.quantity)

    logger.debug(
        "usage.recorded scope=%s metric=%s granularity=%s quantity=%d bucket=%s",
        event.scope, metric.value, granularity.value, event.quantity, bucket.isoformat(),
    )
    return record
