"""SQLAlchemy ORM models — the credential store schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Portable column types (Uuid, String, DateTime) so the same schema runs on
PostgreSQL in production and SQLite in tests.

Account invariants:
- a local account has a password_hash
- a federated account has an external_subject
- a linked account carries both (identity_provider stays "local")
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

IDENTITY_LOCAL = "local"
IDENTITY_FEDERATED = "federated"

USERNAME_MAX_LENGTH = 255
SUBJECT_MAX_LENGTH = 1024


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class User(Base):
    """A dashboard account, local or federated.

    Learn: Federated accounts are keyed by the provider's stable
    subject claim (external_subject), never by email. Email is
    informational and can be reused at the provider.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=new_uuid
    )
    username: Mapped[str] = mapped_column(
        String(USERNAME_MAX_LENGTH), unique=True, nullable=False
    )
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # null for federated-only accounts
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    identity_provider: Mapped[str] = mapped_column(
        String(20), nullable=False, default=IDENTITY_LOCAL
    )
    external_subject: Mapped[Optional[str]] = mapped_column(
        String(SUBJECT_MAX_LENGTH), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
