"""Email and password authentication with opaque bearer sessions."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from datetime import timedelta

import anyio.to_thread
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import AuthSession, User
from ..errors import ConflictError
from ..models import SignupRequest
from ..utils import utcnow
from .collection import store_failure

logger = logging.getLogger(__name__)

PASSWORD_ALGORITHM = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 200_000


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def hash_password(password: str, *, iterations: int = PASSWORD_ITERATIONS) -> str:
    salt = secrets.token_bytes(16)
    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{PASSWORD_ALGORITHM}${iterations}${_b64encode(salt)}${_b64encode(derived)}"


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        algorithm, iterations, salt, expected = stored_hash.split("$", 3)
    except ValueError:
        return False
    if algorithm != PASSWORD_ALGORITHM or not iterations.isdigit():
        return False
    derived = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), _b64decode(salt), int(iterations)
    )
    return hmac.compare_digest(derived, _b64decode(expected))


# Verified against when no account matches the login.
_DUMMY_HASH = hash_password(secrets.token_urlsafe(16))


class Authenticator:
    """Verifies credentials and maps bearer tokens to identities."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._settings = settings
        self._session_factory = session_factory

    async def sign_up(self, payload: SignupRequest) -> User:
        """Register an identity, stashing username and display name for bootstrap."""

        password_hash = await anyio.to_thread.run_sync(hash_password, payload.password)
        user = User(
            email=payload.email,
            password_hash=password_hash,
            user_metadata={
                "username": payload.username.lower(),
                "display_name": payload.display_name,
            },
        )
        try:
            async with self._session_factory() as session:
                session.add(user)
                await session.commit()
        except IntegrityError as exc:
            raise ConflictError("An account with this email already exists") from exc
        except SQLAlchemyError as exc:
            raise store_failure("create account", exc) from exc
        logger.info("Registered user %s", user.id)
        return user

    async def authenticate(self, email: str | None, password: str) -> User | None:
        """Return the account for valid credentials, or ``None``.

        Every rejection runs one password hash, including an unresolved
        ``email`` of ``None``.
        """

        user = None
        if email:
            try:
                async with self._session_factory() as session:
                    user = await session.scalar(
                        select(User).where(User.email == email.strip().lower())
                    )
            except SQLAlchemyError as exc:
                raise store_failure("load account", exc) from exc
        if user is None:
            await anyio.to_thread.run_sync(verify_password, password, _DUMMY_HASH)
            return None
        if not await anyio.to_thread.run_sync(
            verify_password, password, user.password_hash
        ):
            return None
        return user

    async def issue_session(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        expires_at = utcnow() + timedelta(seconds=self._settings.session_ttl_seconds)
        try:
            async with self._session_factory() as session:
                session.add(AuthSession(token=token, user_id=user_id, expires_at=expires_at))
                await session.commit()
        except SQLAlchemyError as exc:
            raise store_failure("create session", exc) from exc
        return token

    async def current_user(self, token: str | None) -> User | None:
        """Return the identity behind a bearer token, or ``None``."""

        if not token:
            return None
        try:
            async with self._session_factory() as session:
                record = await session.get(AuthSession, token)
                if record is None:
                    return None
                if record.expires_at <= utcnow():
                    await session.delete(record)
                    await session.commit()
                    return None
                return await session.get(User, record.user_id)
        except SQLAlchemyError as exc:
            raise store_failure("load session", exc) from exc

    async def revoke(self, token: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(AuthSession).where(AuthSession.token == token))
                await session.commit()
        except SQLAlchemyError as exc:
            raise store_failure("revoke session", exc) from exc

    async def email_for(self, user_id: str) -> str | None:
        """Return the registered email of an identity."""

        async with self._session_factory() as session:
            email = await session.scalar(select(User.email).where(User.id == user_id))
        return email.lower() if email else None
