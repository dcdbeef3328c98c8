"""Usage models — immutable audit records and time-bucketed counters."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from keychain.models.base import Base, utcnow
from keychain.models.enums import Granularity, RateMetric, db_enum

_ONE_OWNER_SQL = (
    "(CASE WHEN profile_id IS NOT NULL THEN 1 ELSE 0 END)"
    " + (CASE WHEN organization_id IS NOT NULL THEN 1 ELSE 0 END)"
    " + (CASE WHEN project_id IS NOT NULL THEN 1 ELSE 0 END) = 1"
)


class UsageRecord(Base):
    """One billable event. Insert-only."""

    __tablename__ = "usage_records"
    __table_args__ = (
        CheckConstraint(_ONE_OWNER_SQL, name="chk_usage_records_one_owner"),
        Index("idx_usage_records_proj_metric_time", "project_id", "metric", "recorded_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True, index=True
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True
    )
    api_key_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("api_keys.id", ondelete="SET NULL"), nullable=True, default=None
    )
    metric: Mapped[RateMetric] = mapped_column(
        db_enum(RateMetric, "rate_metric"), nullable=False, index=True
    )
    granularity: Mapped[Granularity] = mapped_column(
        db_enum(Granularity, "granularity"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )


class UsageCounter(Base):
    """Aggregate quantity for one (owner, metric, granularity, period bucket).

    ``owner_id`` mirrors whichever owner column is set. The bucket key uses it
    instead of the three nullable owner columns because NULLs never collide in
    a unique index, which would stop ON CONFLICT from ever firing.
    """

    __tablename__ = "usage_counters"
    __table_args__ = (
        CheckConstraint(_ONE_OWNER_SQL, name="chk_usage_counters_one_owner"),
        CheckConstraint(
            "owner_id = COALESCE(profile_id, organization_id, project_id)",
            name="chk_usage_counters_owner_id",
        ),
        UniqueConstraint(
            "owner_id", "metric", "granularity", "period_start",
            name="ux_usage_counters_bucket",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=True
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    metric: Mapped[RateMetric] = mapped_column(db_enum(RateMetric, "rate_metric"), nullable=False)
    granularity: Mapped[Granularity] = mapped_column(
        db_enum(Granularity, "granularity"), nullable=False
    )
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
