"""Shared FastAPI dependencies — authentication, scope authorization."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keychain.config import settings
from keychain.dal.plans import get_project_owner
from keychain.database import get_db
from keychain.models.api_key import API_KEY_PREFIX, ApiKey
from keychain.models.base import utcnow
from keychain.models.enums import ApiKeyStatus, OwnerKind
from keychain.models.owner import Project
from keychain.scope import OwnerScope


@dataclass(frozen=True)
class Identity:
    """Who is calling: the key, its project, and the project's owners."""

    api_key_id: uuid.UUID
    project_id: uuid.UUID
    user_id: uuid.UUID
    org_id: uuid.UUID | None = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_identity(
    authorization: str = Header(..., alias="Authorization"),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """Validate the ``Authorization: Bearer kc_...`` header.

    Raises 401 if the key is malformed, unknown, revoked or expired, or
    belongs to an archived project.
    """
    if not authorization.startswith("Bearer "):
        raise _unauthorized("Authorization header must start with 'Bearer '.")

    raw_key = authorization.removeprefix("Bearer ").strip()
    if not raw_key.startswith(API_KEY_PREFIX):
        raise _unauthorized(f"Invalid API key format. Keys must start with '{API_KEY_PREFIX}'.")

    key_hash = ApiKey.hash_key(raw_key, settings.api_key_salt)
    result = await db.execute(
        select(ApiKey, Project)
        .join(Project, Project.id == ApiKey.project_id)
        .where(ApiKey.hash == key_hash)
    )
    row = result.one_or_none()
    if row is None:
        raise _unauthorized("Invalid API key.")

    api_key, project = row
    now = utcnow()
    if api_key.status is not ApiKeyStatus.ACTIVE or api_key.revoked_at is not None:
        raise _unauthorized("API key has been revoked.")
    if api_key.expires_at is not None and _aware(api_key.expires_at) <= now:
        raise _unauthorized("API key has expired.")
    if project.archived_at is not None:
        raise _unauthorized("Project for this API key is archived.")

    await db.execute(
        update(ApiKey).where(ApiKey.id == api_key.id).values(last_used_at=now)
    )

    return Identity(
        api_key_id=api_key.id,
        project_id=project.id,
        user_id=api_key.created_by,
        org_id=project.organization_id,
    )


def _aware(ts: datetime) -> datetime:
    """Treat a naive timestamp as UTC. SQLite drops the offset on read."""
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


async def authorize_scope(db: AsyncSession, identity: Identity, scope: OwnerScope) -> None:
    """Allow the caller's profile, organization, or a project either one owns.

    Raises ``PermissionError`` otherwise.
    """
    if scope.kind is OwnerKind.PROFILE and scope.id == identity.user_id:
        return
    if scope.kind is OwnerKind.ORGANIZATION and scope.id == identity.org_id:
        return
    if scope.kind is OwnerKind.PROJECT:
        if scope.id == identity.project_id:
            return
        owner = await get_project_owner(db, scope.id)
        if owner is not None and owner.id in (identity.user_id, identity.org_id):
            return
    raise PermissionError(f"API key is not authorized for scope {scope}")
