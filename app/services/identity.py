"""Resolve a login identifier (email or username) to an email address."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Profile
from ..errors import IdentityResolutionError
from ..utils import is_email
from .auth import Authenticator

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Lets users log in with a username even though passwords are keyed by email.

    ``resolve`` returns ``None`` when no email can be found; that is a
    normal answer. Lookup failures raise ``IdentityResolutionError`` and
    are never reported as "not found".
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        authenticator: Authenticator,
    ):
        self._session_factory = session_factory
        self._authenticator = authenticator

    async def resolve(self, identifier: str) -> str | None:
        normalized = identifier.strip().lower()
        if not normalized:
            return None
        if is_email(normalized):
            return normalized

        try:
            async with self._session_factory() as session:
                user_id = await session.scalar(
                    select(Profile.user_id).where(Profile.username == normalized)
                )
            if user_id is None:
                return None
            return await self._authenticator.email_for(user_id)
        except SQLAlchemyError as exc:
            logger.warning("Identifier lookup failed: %s", exc)
            raise IdentityResolutionError() from exc
