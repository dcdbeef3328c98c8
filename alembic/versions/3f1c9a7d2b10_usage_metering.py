"""usage metering schema

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 09:12:44.501823

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


tier_enum = postgresql.ENUM(
    "free", "tier1", "tier2", "tier3", "tier4", "tier5", "custom",
    name="tier_enum", create_type=False,
)
plan_type = postgresql.ENUM("individual", "organization", name="plan_type", create_type=False)
rate_metric = postgresql.ENUM(
    "playground_total_requests", "api_requests", "api_tokens",
    name="rate_metric", create_type=False,
)
granularity = postgresql.ENUM(
    "minute", "hour", "day", "month", "all_time", name="granularity", create_type=False,
)
api_key_status = postgresql.ENUM("active", "revoked", name="api_key_status", create_type=False)

_ENUMS = (tier_enum, plan_type, rate_metric, granularity, api_key_status)

_ONE_OWNER_SQL = (
    "(CASE WHEN profile_id IS NOT NULL THEN 1 ELSE 0 END)"
    " + (CASE WHEN organization_id IS NOT NULL THEN 1 ELSE 0 END)"
    " + (CASE WHEN project_id IS NOT NULL THEN 1 ELSE 0 END) = 1"
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    # --- plans ---
    op.create_table(
        "plans",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", plan_type, nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("starting_credit", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("monthly_credit", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("tier", tier_enum, nullable=False, server_default="free"),
        sa.Column("features", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("currently_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("type", "name", name="ux_plan_type_name"),
    )
    op.create_index(
        "ux_default_plan_by_type", "plans", ["type"],
        unique=True, postgresql_where=sa.text("is_default"),
    )

    # --- tier_rate_limits ---
    op.create_table(
        "tier_rate_limits",
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("plans.id"), primary_key=True),
        sa.Column("metric", rate_metric, primary_key=True),
        sa.Column("granularity", granularity, primary_key=True),
        sa.Column("value", sa.BigInteger(), nullable=False),
    )

    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("tier", tier_enum, nullable=False, server_default="free"),
        sa.Column("active_plan_id", sa.Uuid(), sa.ForeignKey("plans.id"), nullable=True),
        sa.Column("credit_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_profiles_active_plan_id", "profiles", ["active_plan_id"])

    # --- organizations ---
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(50), nullable=False, unique=True),
        sa.Column("tier", tier_enum, nullable=False, server_default="free"),
        sa.Column("active_plan_id", sa.Uuid(), sa.ForeignKey("plans.id"), nullable=True),
        sa.Column("credit_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_organizations_active_plan_id", "organizations", ["active_plan_id"])

    # --- projects ---
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("profile_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(50), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "(profile_id IS NOT NULL AND organization_id IS NULL)"
            " OR (profile_id IS NULL AND organization_id IS NOT NULL)",
            name="check_project_owner",
        ),
        sa.UniqueConstraint("profile_id", "organization_id", "slug", name="ux_projects_owner_slug"),
    )
    op.create_index("ix_projects_profile_id", "projects", ["profile_id"])
    op.create_index("ix_projects_organization_id", "projects", ["organization_id"])

    # --- api_keys ---
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False, server_default="default"),
        sa.Column("status", api_key_status, nullable=False, server_default="active"),
        sa.Column("prefix", sa.String(15), nullable=False, unique=True),
        sa.Column("hash", sa.Text(), nullable=False, unique=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_keys_project_id", "api_keys", ["project_id"])

    # --- usage_records ---
    op.create_table(
        "usage_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("profile_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True),
        sa.Column("api_key_id", sa.Uuid(), sa.ForeignKey("api_keys.id", ondelete="SET NULL"), nullable=True),
        sa.Column("metric", rate_metric, nullable=False),
        sa.Column("granularity", granularity, nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(_ONE_OWNER_SQL, name="chk_usage_records_one_owner"),
    )
    op.create_index("ix_usage_records_profile_id", "usage_records", ["profile_id"])
    op.create_index("ix_usage_records_organization_id", "usage_records", ["organization_id"])
    op.create_index("ix_usage_records_project_id", "usage_records", ["project_id"])
    op.create_index("ix_usage_records_metric", "usage_records", ["metric"])
    op.create_index("ix_usage_records_recorded_at", "usage_records", ["recorded_at"])
    op.create_index(
        "idx_usage_records_proj_metric_time", "usage_records", ["project_id", "metric", "recorded_at"]
    )

    # --- usage_counters ---
    op.create_table(
        "usage_counters",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("profile_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True),
        sa.Column("project_id", sa.Uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("metric", rate_metric, nullable=False),
        sa.Column("granularity", granularity, nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(_ONE_OWNER_SQL, name="chk_usage_counters_one_owner"),
        sa.CheckConstraint(
            "owner_id = COALESCE(profile_id, organization_id, project_id)",
            name="chk_usage_counters_owner_id",
        ),
        sa.UniqueConstraint(
            "owner_id", "metric", "granularity", "period_start", name="ux_usage_counters_bucket"
        ),
    )
    op.create_index("ix_usage_counters_owner_id", "usage_counters", ["owner_id"])
    op.create_index("ix_usage_counters_period_start", "usage_counters", ["period_start"])


def downgrade() -> None:
    op.drop_index("ix_usage_counters_period_start", table_name="usage_counters")
    op.drop_index("ix_usage_counters_owner_id", table_name="usage_counters")
    op.drop_table("usage_counters")
    op.drop_index("idx_usage_records_proj_metric_time", table_name="usage_records")
    op.drop_index("ix_usage_records_recorded_at", table_name="usage_records")
    op.drop_index("ix_usage_records_metric", table_name="usage_records")
    op.drop_index("ix_usage_records_project_id", table_name="usage_records")
    op.drop_index("ix_usage_records_organization_id", table_name="usage_records")
    op.drop_index("ix_usage_records_profile_id", table_name="usage_records")
    op.drop_table("usage_records")
    op.drop_index("ix_api_keys_project_id", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_index("ix_projects_organization_id", table_name="projects")
    op.drop_index("ix_projects_profile_id", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_organizations_active_plan_id", table_name="organizations")
    op.drop_table("organizations")
    op.drop_index("ix_profiles_active_plan_id", table_name="profiles")
    op.drop_table("profiles")
    op.drop_table("tier_rate_limits")
    op.drop_index("ux_default_plan_by_type", table_name="plans")
    op.drop_table("plans")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
