"""Owner models — profiles, organizations and the projects they own.

These rows are managed by the wider product; the metering core reads their
plan/tier columns and writes them only through ``apply_plan_to_owner``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from keychain.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from keychain.models.enums import Tier, db_enum


class Profile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "profiles"

    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    tier: Mapped[Tier] = mapped_column(db_enum(Tier, "tier_enum"), nullable=False, default=Tier.FREE)
    active_plan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("plans.id"), nullable=True, default=None, index=True
    )
    credit_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )


class Organization(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    tier: Mapped[Tier] = mapped_column(db_enum(Tier, "tier_enum"), nullable=False, default=Tier.FREE)
    active_plan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("plans.id"), nullable=True, default=None, index=True
    )
    credit_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )


class Project(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "projects"
    __table_args__ = (
        # Exactly one owner must be set
        CheckConstraint(
            "(profile_id IS NOT NULL AND organization_id IS NULL)"
            " OR (profile_id IS NULL AND organization_id IS NOT NULL)",
            name="check_project_owner",
        ),
        UniqueConstraint("profile_id", "organization_id", "slug", name="ux_projects_owner_slug"),
    )

    profile_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
