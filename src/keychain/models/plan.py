"""Plan and per-plan rate limit models."""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keychain.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from keychain.models.enums import Granularity, PlanType, RateMetric, Tier, db_enum


class Plan(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "plans"
    __table_args__ = (
        UniqueConstraint("type", "name", name="ux_plan_type_name"),
        # At most one default plan per plan type
        Index(
            "ux_default_plan_by_type",
            "type",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[PlanType] = mapped_column(db_enum(PlanType, "plan_type"), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    starting_credit: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    monthly_credit: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    tier: Mapped[Tier] = mapped_column(db_enum(Tier, "tier_enum"), nullable=False, default=Tier.FREE)
    features: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    currently_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    rate_limits: Mapped[list[RateLimit]] = relationship(
        "RateLimit",
        back_populates="plan",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class RateLimit(Base):
    """Limit for one (plan, metric, granularity). ``value == 0`` means unlimited."""

    __tablename__ = "tier_rate_limits"

    plan_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("plans.id"), primary_key=True)
    metric: Mapped[RateMetric] = mapped_column(db_enum(RateMetric, "rate_metric"), primary_key=True)
    granularity: Mapped[Granularity] = mapped_column(
        db_enum(Granularity, "granularity"), primary_key=True
    )
    value: Mapped[int] = mapped_column(BigInteger, nullable=False)

    plan: Mapped[Plan] = relationship("Plan", back_populates="rate_limits")
