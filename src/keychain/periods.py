"""Map event timestamps to their counter period buckets."""

from __future__ import annotations

from datetime import datetime, timezone

from keychain.errors import InvalidGranularityError, InvalidMetricError
from keychain.models.enums import Granularity, RateMetric

# Every all_time event collapses into this single bucket
ALL_TIME_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_granularity(value: Granularity | str) -> Granularity:
    """Coerce a granularity string, raising ``InvalidGranularityError`` if unknown."""
    try:
        return Granularity(value)
    except ValueError:
        raise InvalidGranularityError(
            f"Invalid granularity: {value!r}",
            {"allowed": [g.value for g in Granularity]},
        ) from None


def parse_metric(value: RateMetric | str) -> RateMetric:
    """Coerce a metric string, raising ``InvalidMetricError`` if unknown."""
    try:
        return RateMetric(value)
    except ValueError:
        raise InvalidMetricError(
            f"Invalid metric: {value!r}",
            {"allowed": [m.value for m in RateMetric]},
        ) from None


def period_start(ts: datetime, granularity: Granularity | str) -> datetime:
    """Truncate ``ts`` to the start of its bucket, in UTC.

    Naive timestamps are taken to be UTC already.
    """
    gran = parse_granularity(granularity)
    if gran is Granularity.ALL_TIME:
        return ALL_TIME_EPOCH

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)

    if gran is Granularity.MINUTE:
        return ts.replace(second=0, microsecond=0)
    if gran is Granularity.HOUR:
        return ts.replace(minute=0, second=0, microsecond=0)
    if gran is Granularity.DAY:
        return ts.replace(hour=0, minute=0, second=0, microsecond=0)
    return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
