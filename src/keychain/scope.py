"""The owner scope that usage and quota are attributed to."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from keychain.errors import InvalidScopeError
from keychain.models.enums import OwnerKind

_COLUMN_BY_KIND = {
    OwnerKind.PROFILE: "profile_id",
    OwnerKind.ORGANIZATION: "organization_id",
    OwnerKind.PROJECT: "project_id",
}


def _as_uuid(value: uuid.UUID | str, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise InvalidScopeError(
            f"`{field}` is not a valid UUID: {value!r}", {"field": field}
        ) from exc


@dataclass(frozen=True)
class OwnerScope:
    """A profile, organization or project; exactly one per call."""

    kind: OwnerKind
    id: uuid.UUID

    def __post_init__(self) -> None:
        try:
            kind = OwnerKind(self.kind)
        except ValueError:
            raise InvalidScopeError(f"Invalid owner scope kind: {self.kind!r}") from None
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "id", _as_uuid(self.id, "id"))

    @classmethod
    def resolve(
        cls,
        *,
        profile_id: uuid.UUID | str | None = None,
        organization_id: uuid.UUID | str | None = None,
        project_id: uuid.UUID | str | None = None,
    ) -> OwnerScope:
        """Build the canonical scope from raw identity inputs.

        Raises ``InvalidScopeError`` unless exactly one identifier is given.
        """
        supplied = {
            OwnerKind.PROFILE: profile_id,
            OwnerKind.ORGANIZATION: organization_id,
            OwnerKind.PROJECT: project_id,
        }
        present = [(kind, value) for kind, value in supplied.items() if value]
        if len(present) != 1:
            raise InvalidScopeError(
                "Exactly one of `profile_id`, `organization_id` or `project_id` must be supplied.",
                {"supplied": [_COLUMN_BY_KIND[kind] for kind, _ in present]},
            )
        kind, value = present[0]
        return cls(kind=kind, id=_as_uuid(value, _COLUMN_BY_KIND[kind]))

    @classmethod
    def profile(cls, profile_id: uuid.UUID | str) -> OwnerScope:
        return cls.resolve(profile_id=profile_id)

    @classmethod
    def organization(cls, organization_id: uuid.UUID | str) -> OwnerScope:
        return cls.resolve(organization_id=organization_id)

    @classmethod
    def project(cls, project_id: uuid.UUID | str) -> OwnerScope:
        return cls.resolve(project_id=project_id)

    @property
    def column(self) -> str:
        """Name of the storage column this scope keys on."""
        return _COLUMN_BY_KIND[self.kind]

    def owner_columns(self) -> dict[str, Any]:
        """The three owner columns of a usage row, exactly one of them set."""
        columns: dict[str, Any] = {name: None for name in _COLUMN_BY_KIND.values()}
        columns[self.column] = self.id
        return columns

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"
