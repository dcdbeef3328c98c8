"""Data-access layer for usage metering, quotas and plans."""

from keychain.dal.audit import append_usage_record, list_usage_records
from keychain.dal.counters import (
    CounterSnapshot,
    list_counters,
    read_latest,
    reset_counter,
    upsert_increment,
)
from keychain.dal.plans import (
    PlanFeatures,
    apply_plan_to_owner,
    fetch_all_plans,
    fetch_owner_plan,
    get_owner_plan_id,
    get_owner_tier,
    get_plan_id,
    get_project_owner,
    get_rate_limit,
)
from keychain.dal.quota import can_consume
from keychain.dal.recorder import UsageEvent, record_usage

__all__ = [
    "CounterSnapshot",
    "PlanFeatures",
    "UsageEvent",
    "append_usage_record",
    "apply_plan_to_owner",
    "can_consume",
    "fetch_all_plans",
    "fetch_owner_plan",
    "get_owner_plan_id",
    "get_owner_tier",
    "get_plan_id",
    "get_project_owner",
    "get_rate_limit",
    "list_counters",
    "list_usage_records",
    "read_latest",
    "record_usage",
    "reset_counter",
    "upsert_increment",
]
