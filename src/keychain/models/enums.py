"""Closed enumerations shared by the ORM models and the metering core."""

from __future__ import annotations

import enum

from sqlalchemy import Enum


class OwnerKind(str, enum.Enum):
    PROFILE = "profile"
    ORGANIZATION = "organization"
    PROJECT = "project"


class PlanType(str, enum.Enum):
    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"


class Tier(str, enum.Enum):
    FREE = "free"
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"
    TIER4 = "tier4"
    TIER5 = "tier5"
    CUSTOM = "custom"


class RateMetric(str, enum.Enum):
    """Billable event types."""

    PLAYGROUND_TOTAL_REQUESTS = "playground_total_requests"
    API_REQUESTS = "api_requests"
    API_TOKENS = "api_tokens"


class Granularity(str, enum.Enum):
    """Aggregation windows for usage counters."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"
    ALL_TIME = "all_time"


class ApiKeyStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


def db_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Column type storing enum *values* (``"api_requests"``), not member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
