"""Profile creation, onboarding and settings."""

from __future__ import annotations

import enum
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import upsert
from ..db_models import Profile, User
from ..errors import ConflictError, NotFoundError
from ..models import ProfileCreate, ProfileUpdate
from ..utils import is_valid_display_name, is_valid_username, utcnow
from .collection import store_failure

logger = logging.getLogger(__name__)

USERNAME_TAKEN = "That username is already taken"


class BootstrapOutcome(str, enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    SKIPPED_INVALID_METADATA = "skipped_invalid_metadata"

    @property
    def created(self) -> bool:
        return self is BootstrapOutcome.CREATED


class ProfileService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Profile:
        try:
            async with self._session_factory() as session:
                profile = await session.get(Profile, user_id)
        except SQLAlchemyError as exc:
            raise store_failure("load profile", exc) from exc
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    async def bootstrap(self, user: User) -> BootstrapOutcome:
        """Create the profile for a freshly authenticated identity.

        Safe to call after every login. Missing or malformed signup metadata
        skips creation instead of failing, leaving the user to onboarding.
        """

        try:
            async with self._session_factory() as session:
                if await session.get(Profile, user.id) is not None:
                    return BootstrapOutcome.ALREADY_EXISTS

                metadata = user.user_metadata or {}
                username = metadata.get("username")
                display_name = metadata.get("display_name")
                if not is_valid_username(username) or not is_valid_display_name(
                    display_name
                ):
                    logger.info("Skipping profile bootstrap for %s: invalid metadata", user.id)
                    return BootstrapOutcome.SKIPPED_INVALID_METADATA

                session.add(
                    Profile(
                        user_id=user.id,
                        username=username.lower(),
                        display_name=display_name.strip(),
                        profile_public=True,
                        default_item_public=True,
                        default_review_public=True,
                    )
                )
                await session.commit()
        except IntegrityError:
            return await self._bootstrap_conflict(user)
        except SQLAlchemyError as exc:
            raise store_failure("bootstrap profile", exc) from exc

        logger.info("Bootstrapped profile for %s", user.id)
        return BootstrapOutcome.CREATED

    async def _bootstrap_conflict(self, user: User) -> BootstrapOutcome:
        try:
            async with self._session_factory() as session:
                exists = await session.get(Profile, user.id) is not None
        except SQLAlchemyError as exc:
            raise store_failure("bootstrap profile", exc) from exc
        if exists:
            # A concurrent bootstrap for the same identity got there first.
            return BootstrapOutcome.ALREADY_EXISTS
        # The stashed username was claimed by someone else since signup.
        logger.info("Skipping profile bootstrap for %s: username taken", user.id)
        return BootstrapOutcome.SKIPPED_INVALID_METADATA

    async def save(self, user_id: str, payload: ProfileCreate) -> None:
        """Create or replace the caller's profile from the onboarding form."""

        values = {
            "user_id": user_id,
            "username": payload.username.lower(),
            "display_name": payload.display_name,
            "profile_public": bool(payload.profile_public),
            "updated_at": utcnow(),
        }
        try:
            async with self._session_factory() as session:
                await upsert(session, Profile, values, conflict_columns=("user_id",))
                await session.commit()
        except IntegrityError as exc:
            raise ConflictError(USERNAME_TAKEN) from exc
        except SQLAlchemyError as exc:
            raise store_failure("save profile", exc) from exc

    async def update(self, user_id: str, payload: ProfileUpdate) -> Profile:
        changes = payload.changes()
        try:
            async with self._session_factory() as session:
                profile = await session.scalar(
                    select(Profile).where(Profile.user_id == user_id)
                )
                if profile is None:
                    raise NotFoundError("Profile not found")
                for name, value in changes.items():
                    setattr(profile, name, value)
                await session.commit()
                return profile
        except IntegrityError as exc:
            raise ConflictError(USERNAME_TAKEN) from exc
        except SQLAlchemyError as exc:
            raise store_failure("update profile", exc) from exc
