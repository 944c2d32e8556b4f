# auth.py — Authentication, server-side sessions and the authorization gate
# Features:
# - bcrypt password hashing (salted, constant-time verification)
# - Opaque session tokens held in an HTTP-only cookie
# - In-memory session store with expiry, injected through app.state
# - Composable role predicates shared by every router

import os
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict

import bcrypt
from fastapi import Depends, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import Forbidden, InvalidCredentials, Unauthenticated
from models import User, UserRole

logger = logging.getLogger("task-portal.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "task_portal_session")
SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", "120"))
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Verified against when the email is unknown, so both failure paths cost one bcrypt check
_DUMMY_HASH = bcrypt.hashpw(b"task-portal-dummy-password", bcrypt.gensalt(rounds=BCRYPT_ROUNDS))


# ============================================================
# SCHEMAS
# ============================================================

class SessionData(BaseModel):
    user_id: int
    email: str
    name: str
    role: str
    logged_in: bool = True
    expires_at: datetime

    def public_user(self) -> Dict[str, object]:
        return {"id": self.user_id, "email": self.email, "name": self.name, "role": self.role}


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Credential checks against the users table"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    @staticmethod
    async def authenticate(email: str, password: str, db: AsyncSession) -> User:
        """Return the user for valid credentials.

        Unknown email and wrong password both raise InvalidCredentials with
        the same message, after the same amount of hashing work.
        """
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None:
            bcrypt.checkpw(password.encode("utf-8"), _DUMMY_HASH)
            logger.info("Login failed for unknown account")
            raise InvalidCredentials()

        if not AuthService.verify_password(password, user.password_hash):
            logger.info(f"Login failed for user {user.id}")
            raise InvalidCredentials()

        return user


# ============================================================
# SESSION STORE
# ============================================================

class SessionStore:
    """Server-side session records keyed by an opaque token.

    Sessions live for the lifetime of the process. A new login creates a new
    session; earlier sessions for the same user stay valid until they expire
    or are destroyed.
    """

    def __init__(self, ttl_minutes: int = SESSION_TTL_MINUTES):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._sessions: Dict[str, SessionData] = {}

    def create(self, user: User) -> str:
        token = secrets.token_urlsafe(32)
        role = user.role.value if isinstance(user.role, UserRole) else user.role
        self._sessions[token] = SessionData(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=role,
            logged_in=True,
            expires_at=datetime.now(timezone.utc) + self.ttl,
        )
        self.purge_expired()
        return token

    def get(self, token: Optional[str]) -> Optional[SessionData]:
        if not token:
            return None
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.expires_at <= datetime.now(timezone.utc):
            self._sessions.pop(token, None)
            return None
        return session

    def destroy(self, token: Optional[str]) -> None:
        if token:
            self._sessions.pop(token, None)

    def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        expired = [t for t, s in self._sessions.items() if s.expires_at <= now]
        for token in expired:
            del self._sessions[token]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


# ============================================================
# AUTHORIZATION GATE (pure predicates)
# ============================================================

def require_authenticated(session: Optional[SessionData]) -> SessionData:
    if session is None or not session.logged_in:
        raise Unauthenticated()
    return session


def require_role(session: Optional[SessionData], role: UserRole) -> SessionData:
    session = require_authenticated(session)
    if session.role != role.value:
        raise Forbidden(f"Insufficient permissions. {role.value.capitalize()} role required.")
    return session


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_session_token(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE_NAME)


async def optional_session(
    token: Optional[str] = Depends(get_session_token),
    store: SessionStore = Depends(get_session_store),
) -> Optional[SessionData]:
    return store.get(token)


async def current_session(
    session: Optional[SessionData] = Depends(optional_session),
) -> SessionData:
    return require_authenticated(session)


def role_required(role: UserRole):
    """Dependency factory: require an active session with the given role"""
    async def _check(session: Optional[SessionData] = Depends(optional_session)) -> SessionData:
        return require_role(session, role)
    return _check


require_administrator = role_required(UserRole.ADMINISTRATOR)
require_collaborator = role_required(UserRole.COLLABORATOR)
