"""API key model — hashed keys that authenticate calls for a project."""

from __future__ import annotations

import hashlib
import secrets
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from keychain.models.base import Base, utcnow
from keychain.models.enums import ApiKeyStatus, db_enum

API_KEY_PREFIX = "kc_"


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="default")
    status: Mapped[ApiKeyStatus] = mapped_column(
        db_enum(ApiKeyStatus, "api_key_status"), nullable=False, default=ApiKeyStatus.ACTIVE
    )
    prefix: Mapped[str] = mapped_column(String(15), unique=True, nullable=False)
    hash: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    @staticmethod
    def generate_key() -> str:
        """Generate a new API key in the format ``kc_<hex>``."""
        return f"{API_KEY_PREFIX}{secrets.token_hex(24)}"

    @staticmethod
    def hash_key(raw_key: str, salt: str) -> str:
        """Produce a SHA-256 hash of the raw key with the given salt."""
        return hashlib.sha256(f"{salt}:{raw_key}".encode()).hexdigest()

    @staticmethod
    def prefix_of(raw_key: str) -> str:
        """Public, non-secret prefix shown in dashboards."""
        return raw_key[:12]
