"""Read paths that expose user data to anonymous or third-party viewers.

Data is public only when the owning profile is public and the item or
review itself is public. Either flag alone is never enough.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CollectionItem, ItemReview, Profile
from ..models import (
    CollectionItemOut,
    MediaType,
    PublicProfileOut,
    PublicProfileView,
    PublicReviewOut,
    ReviewOut,
    UserSummary,
)
from .collection import store_failure

USER_SEARCH_LIMIT = 25


class PublicVisibilityFilter:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def public_profile(self, username: str) -> PublicProfileView | None:
        """Return a user's public page, or ``None`` when absent or private."""

        username = username.strip().lower()
        if not username:
            return None

        try:
            async with self._session_factory() as session:
                profile = await session.scalar(
                    select(Profile).where(
                        Profile.username == username,
                        Profile.profile_public.is_(True),
                    )
                )
                if profile is None:
                    return None

                items = await session.scalars(
                    select(CollectionItem)
                    .where(
                        CollectionItem.user_id == profile.user_id,
                        CollectionItem.is_public.is_(True),
                    )
                    .order_by(CollectionItem.added_at.desc())
                )
                reviews = await session.scalars(
                    select(ItemReview)
                    .where(
                        ItemReview.user_id == profile.user_id,
                        ItemReview.is_public.is_(True),
                    )
                    .order_by(ItemReview.updated_at.desc())
                )
                return PublicProfileView(
                    profile=PublicProfileOut.model_validate(profile),
                    items=[CollectionItemOut.model_validate(item) for item in items],
                    reviews=[ReviewOut.model_validate(review) for review in reviews],
                )
        except SQLAlchemyError as exc:
            raise store_failure("load public profile", exc) from exc

    async def public_reviews(
        self, tmdb_id: int, media_type: MediaType
    ) -> list[PublicReviewOut]:
        """Return every visible review of a title, newest first.

        Reviews by users without a public profile are left out entirely
        rather than shown anonymously.
        """

        statement = (
            select(ItemReview, Profile.username)
            .join(Profile, Profile.user_id == ItemReview.user_id)
            .where(
                ItemReview.tmdb_id == tmdb_id,
                ItemReview.media_type == media_type,
                ItemReview.is_public.is_(True),
                Profile.profile_public.is_(True),
            )
            .order_by(ItemReview.updated_at.desc())
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(statement)).all()
        except SQLAlchemyError as exc:
            raise store_failure("load public reviews", exc) from exc

        return [
            PublicReviewOut(
                **ReviewOut.model_validate(review).model_dump(), username=username
            )
            for review, username in rows
        ]

    async def search_users(self, query: str | None = None) -> list[UserSummary]:
        """List public profiles, optionally filtered by a username fragment."""

        statement = (
            select(Profile)
            .where(Profile.profile_public.is_(True))
            .order_by(Profile.username)
            .limit(USER_SEARCH_LIMIT)
        )
        fragment = (query or "").strip().lower()
        if fragment:
            statement = statement.where(
                Profile.username.contains(fragment, autoescape=True)
            )

        try:
            async with self._session_factory() as session:
                profiles = await session.scalars(statement)
                return [UserSummary.model_validate(profile) for profile in profiles]
        except SQLAlchemyError as exc:
            raise store_failure("search users", exc) from exc
