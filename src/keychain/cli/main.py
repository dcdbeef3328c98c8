"""Keychain CLI entry point.

Operator commands for the metering database: create tables, seed the plan
catalog, inspect plans and counters, and reset or re-plan an owner.

Usage::

    keychain init-db
    keychain seed --catalog plans.yaml
    keychain check --profile <uuid> --metric api_requests --granularity day
    keychain reset --organization <uuid> --metric api_requests --granularity day
    keychain apply-plan --profile <uuid> --plan-id <uuid>
    keychain usage --project <uuid>

Exit status is 1 on errors and 2 when ``check`` denies the request.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keychain.catalog import load_catalog, seed_plans
from keychain.config import settings
from keychain.dal import (
    apply_plan_to_owner,
    can_consume,
    fetch_all_plans,
    fetch_owner_plan,
    list_counters,
    reset_counter,
)
from keychain.database import build_engine, init_db
from keychain.errors import KeychainError
from keychain.models.enums import Granularity, OwnerKind, PlanType, RateMetric
from keychain.scope import OwnerScope

EXIT_ERROR = 1
EXIT_DENIED = 2

_PLAN_TYPE_BY_KIND = {
    OwnerKind.PROFILE: PlanType.INDIVIDUAL,
    OwnerKind.ORGANIZATION: PlanType.ORGANIZATION,
}


def _print_table(headers: list[str], rows: list[list[str]]) -> None:
    """Print a simple formatted table to stdout."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    print(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("-+-".join("-" * w for w in widths))
    for row in rows:
        print(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))


@asynccontextmanager
async def _session(database_url: str) -> AsyncIterator[AsyncSession]:
    """One engine per invocation, committed on success and disposed on exit."""
    engine = build_engine(database_url, echo=settings.sql_echo)
    try:
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    finally:
        await engine.dispose()


def _scope_from_args(args: argparse.Namespace) -> OwnerScope:
    return OwnerScope.resolve(
        profile_id=args.profile,
        organization_id=args.organization,
        project_id=args.project,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def cmd_init_db(args: argparse.Namespace) -> int:
    engine = build_engine(args.database_url)
    try:
        await init_db(bind=engine)
    finally:
        await engine.dispose()
    print("Tables created.")
    return 0


async def cmd_seed(args: argparse.Namespace) -> int:
    catalog = load_catalog(args.catalog)
    async with _session(args.database_url) as db:
        counts = await seed_plans(db, catalog)
    print(f"Seeded plans: {counts['created']} created, {counts['updated']} updated.")
    return 0


async def cmd_plans(args: argparse.Namespace) -> int:
    async with _session(args.database_url) as db:
        plans = await fetch_all_plans(db)

    rows: list[list[str]] = []
    for plan_type, by_id in plans.items():
        for plan in by_id.values():
            limits = ", ".join(
                f"{r.metric.value}/{r.granularity.value}={r.value or 'unlimited'}"
                for r in sorted(plan.rate_limits, key=lambda r: (r.metric.value, r.granularity.value))
            )
            rows.append([
                plan_type,
                plan.name + (" *" if plan.is_default else ""),
                plan.tier.value,
                str(plan.id),
                limits or "-",
            ])
    _print_table(["Type", "Plan", "Tier", "ID", "Limits"], rows)
    return 0


async def cmd_check(args: argparse.Namespace) -> int:
    scope = _scope_from_args(args)
    async with _session(args.database_url) as db:
        allowed = await can_consume(db, scope, args.metric, args.granularity, args.qty)
    print("allowed" if allowed else "denied")
    return 0 if allowed else EXIT_DENIED


async def cmd_reset(args: argparse.Namespace) -> int:
    scope = _scope_from_args(args)
    async with _session(args.database_url) as db:
        touched = await reset_counter(db, scope, args.metric, args.granularity)
    print(f"Reset {touched} bucket(s) for {scope}.")
    return 0


async def cmd_apply_plan(args: argparse.Namespace) -> int:
    scope = _scope_from_args(args)
    plan_type = _PLAN_TYPE_BY_KIND.get(scope.kind, PlanType.INDIVIDUAL)
    async with _session(args.database_url) as db:
        plan = await fetch_owner_plan(db, args.plan_id, plan_type)
        await apply_plan_to_owner(db, scope, plan)
    print(f"Applied plan {plan.name} ({plan.id}) to {scope}.")
    return 0


async def cmd_usage(args: argparse.Namespace) -> int:
    scope = _scope_from_args(args)
    async with _session(args.database_url) as db:
        counters = await list_counters(db, scope, args.metric)

    if not counters:
        print(f"No usage recorded for {scope}.")
        return 0
    _print_table(
        ["Metric", "Granularity", "Period start", "Quantity"],
        [
            [c.metric.value, c.granularity.value, c.period_start.isoformat(), str(c.quantity)]
            for c in counters
        ],
    )
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "seed": cmd_seed,
    "plans": cmd_plans,
    "check": cmd_check,
    "reset": cmd_reset,
    "apply-plan": cmd_apply_plan,
    "usage": cmd_usage,
}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_scope_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--profile", help="Profile UUID")
    group.add_argument("--organization", help="Organization UUID")
    group.add_argument("--project", help="Project UUID")


def _add_metric_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--metric", required=True, choices=[m.value for m in RateMetric], help="Billable metric"
    )
    parser.add_argument(
        "--granularity",
        required=True,
        choices=[g.value for g in Granularity],
        help="Aggregation window",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keychain",
        description="Keychain CLI — usage metering and quota administration",
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="SQLAlchemy database URL (default: KC_DATABASE_URL)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create all tables (dev only; use Alembic in production)")

    seed_parser = subparsers.add_parser("seed", help="Seed the plan catalog")
    seed_parser.add_argument(
        "--catalog",
        default=None,
        help="Path to a plan catalog YAML file (default: KC_CATALOG_PATH or bundled)",
    )

    subparsers.add_parser("plans", help="List currently available plans")

    check_parser = subparsers.add_parser("check", help="Check whether usage would be admitted")
    _add_scope_args(check_parser)
    _add_metric_args(check_parser)
    check_parser.add_argument("--qty", type=int, default=1, help="Units to admit (default: 1)")

    reset_parser = subparsers.add_parser("reset", help="Zero an owner's counters")
    _add_scope_args(reset_parser)
    _add_metric_args(reset_parser)

    apply_parser = subparsers.add_parser("apply-plan", help="Assign a plan to a profile or organization")
    _add_scope_args(apply_parser)
    apply_parser.add_argument(
        "--plan-id", default=None, help="Plan UUID (default: the default plan for the owner type)"
    )

    usage_parser = subparsers.add_parser("usage", help="Show an owner's counters")
    _add_scope_args(usage_parser)
    usage_parser.add_argument("--metric", default=None, choices=[m.value for m in RateMetric])

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    parsed = parser.parse_args(argv)

    if parsed.command is None:
        parser.print_help()
        sys.exit(EXIT_ERROR)

    logging.basicConfig(level=settings.log_level)

    try:
        code = asyncio.run(COMMANDS[parsed.command](parsed))
    except (KeychainError, ValueError, LookupError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
