"""Exception hierarchy for the metering core.

Caller bugs (bad scope, unknown granularity or metric) subclass ``ValueError``
so the HTTP boundary can map them to 422 alongside pydantic validation errors.
Quota denial is never an exception: ``can_consume`` simply returns ``False``.
"""

from __future__ import annotations

from typing import Any


class KeychainError(Exception):
    """Base exception for all Keychain errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


# ── Caller errors ────────────────────────────────────────────────

class InvalidScopeError(KeychainError, ValueError):
    """Zero or more than one owner identifier was supplied."""


class InvalidGranularityError(KeychainError, ValueError):
    """Granularity is not one of the known aggregation windows."""


class InvalidMetricError(KeychainError, ValueError):
    """Metric is not one of the billable event types."""


# ── Missing data ─────────────────────────────────────────────────

class NotFoundError(KeychainError, LookupError):
    """A record the caller depends on does not exist."""


class PlanNotFoundError(NotFoundError):
    """Neither the override plan nor a default plan for the type exists."""


class OwnerNotFoundError(NotFoundError):
    """The profile or organization referenced by a scope does not exist."""


# ── Storage ──────────────────────────────────────────────────────

class TransactionFailure(KeychainError):
    """An atomic write failed and was rolled back.

    ``transient`` is true for connection loss, lock timeouts and deadlocks,
    where the caller may retry the whole billable operation with backoff.
    Constraint violations are not transient and must not be retried.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.transient = transient
