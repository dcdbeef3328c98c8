"""SQLAlchemy ORM models for Keychain."""

from keychain.models.api_key import ApiKey
from keychain.models.base import Base
from keychain.models.enums import (
    ApiKeyStatus,
    Granularity,
    OwnerKind,
    PlanType,
    RateMetric,
    Tier,
)
from keychain.models.owner import Organization, Profile, Project
from keychain.models.plan import Plan, RateLimit
from keychain.models.usage import UsageCounter, UsageRecord

__all__ = [
    "ApiKey",
    "ApiKeyStatus",
    "Base",
    "Granularity",
    "Organization",
    "OwnerKind",
    "Plan",
    "PlanType",
    "Profile",
    "Project",
    "RateLimit",
    "RateMetric",
    "Tier",
    "UsageCounter",
    "UsageRecord",
]
