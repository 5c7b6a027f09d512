"""User service — the credential store.

Learn: Service layer separates business logic from HTTP routing.
API routes and the auth orchestrator call this; this calls the database.

Two ways an account comes to exist:
1. Local registration (username + bcrypt password hash)
2. First successful SSO login for an unseen provider subject

Federated accounts are found by external_subject only. Matching on email
would let anyone who can get that email at the provider take over the
account, so email linking is opt-in per address (link_emails).
"""

import hashlib
import re
import uuid
from typing import Iterable, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agentgate.auth.errors import UserExistsError
from agentgate.auth.federated import FederatedProfile
from agentgate.auth.password import hash_password, verify_password
from agentgate.db.models import (
    IDENTITY_FEDERATED,
    IDENTITY_LOCAL,
    USERNAME_MAX_LENGTH,
    User,
    utcnow,
)

logger = structlog.get_logger()

FEDERATED_USERNAME_PREFIX = "sso:"
LOCAL_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.@-]{3,64}$")


def federated_username(subject: str) -> str:
    """Username for a federated account.

    Subjects too long for the username column are replaced by their
    SHA-256 digest; the full subject stays in external_subject.
    """
    username = FEDERATED_USERNAME_PREFIX + subject
    if len(username) <= USERNAME_MAX_LENGTH:
        return username
    return FEDERATED_USERNAME_PREFIX + hashlib.sha256(subject.encode()).hexdigest()

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class UserService:
    """Reads and writes user accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ────────────────────────────────────────

    async def get(self, user_id) -> Optional[User]:
        try:
            uid = user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
        except ValueError:
            return None
        return await self.db.get(User, uid)

    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalars().first()

    async def get_by_subject(self, subject: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.external_subject == subject)
        )
        return result.scalars().first()

    async def first_user(self) -> Optional[User]:
        """Oldest account; platform mode runs every request as this user."""
        result = await self.db.execute(
            select(User).order_by(User.created_at, User.id).limit(1)
        )
        return result.scalars().first()

    async def has_users(self) -> bool:
        result = await self.db.execute(select(func.count()).select_from(User))
        return result.scalar_one() > 0

    # ─── Local accounts ─────────────────────────────────

    async def create_local(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> User:
        if not LOCAL_USERNAME_RE.match(username):
            raise ValueError(
                "Username must be 3-64 characters of letters, digits, '_', '.', '@' or '-'"
            )
        user = User(
            username=username,
            password_hash=hash_password(password),
            email=email.lower() if email else None,
            display_name=display_name or username,
            identity_provider=IDENTITY_LOCAL,
            created_at=utcnow(),
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise UserExistsError(f"Username {username!r} is already taken")
        await self.db.refresh(user)
        logger.info("user.created", user_id=str(user.id), identity_provider="local")
        return user

    async def authenticate_local(self, username: str, password: str) -> Optional[User]:
        """The account if the password matches, else None."""
        user = await self.get_by_username(username)
        if not user or not verify_password(password, user.password_hash):
            return None
        return user

    # ─── Federated accounts ─────────────────────────────

    async def upsert_federated(
        self,
        profile: FederatedProfile,
        link_emails: Iterable[str] = (),
    ) -> User:
        """Find or create the account for a provider subject, atomically.

        Learn: Two first-time logins for the same subject can race. The
        insert ignores unique conflicts (ON CONFLICT DO NOTHING), then we
        read back whatever row won, so both callers end up with the
        same account and neither sees an error.
        """
        user = await self.get_by_subject(profile.subject)
        if user is None:
            user = await self._link_by_email(profile, link_emails)
        if user is None:
            await self._insert_federated(profile)
            user = await self.get_by_subject(profile.subject)
            if user is None:
                raise RuntimeError(
                    "Federated account vanished after insert"
                )
        if profile.email and not user.email:
            user.email = profile.email.lower()
        user.last_login_at = utcnow()
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def _insert_federated(self, profile: FederatedProfile) -> None:
        values = dict(
            id=uuid.uuid4(),
            username=federated_username(profile.subject),
            password_hash=None,
            email=profile.email.lower() if profile.email else None,
            display_name=(profile.name or profile.email or profile.subject)[
                :USERNAME_MAX_LENGTH
            ],
            identity_provider=IDENTITY_FEDERATED,
            external_subject=profile.subject,
            created_at=utcnow(),
        )
        dialect = self.db.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise RuntimeError(f"Unsupported database dialect: {dialect}")
        stmt = insert(User).values(**values).on_conflict_do_nothing()
        result = await self.db.execute(stmt)
        if result.rowcount:
            logger.info(
                "user.created",
                user_id=str(values["id"]),
                identity_provider="federated",
            )

    async def _link_by_email(
        self, profile: FederatedProfile, link_emails: Iterable[str]
    ) -> Optional[User]:
        """Attach the subject to an existing local account, if explicitly allowed."""
        email = (profile.email or "").lower()
        if not email or email not in {e.lower() for e in link_emails}:
            return None
        result = await self.db.execute(
            select(User.id)
            .where(
                User.email == email,
                User.identity_provider == IDENTITY_LOCAL,
                User.external_subject.is_(None),
            )
            .order_by(User.created_at, User.id)
            .limit(1)
        )
        candidate_id = result.scalars().first()
        if candidate_id is None:
            return None
        # Conditional update: loses cleanly if someone linked it meanwhile
        result = await self.db.execute(
            update(User)
            .where(User.id == candidate_id, User.external_subject.is_(None))
            .values(external_subject=profile.subject)
        )
        if not result.rowcount:
            return None
        logger.info("user.linked", user_id=str(candidate_id))
        user = await self.db.get(User, candidate_id)
        await self.db.refresh(user)
        return user

    async def touch_login(self, user: User) -> User:
        user.last_login_at = utcnow()
        await self.db.commit()
        return user
