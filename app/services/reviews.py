"""Per-user reviews, one per (user, title)."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import upsert
from ..db_models import ItemReview
from ..errors import UpstreamError
from ..models import MediaType, ReviewUpsert
from ..utils import utcnow
from .collection import profile_default, store_failure

REVIEW_KEY = ("user_id", "tmdb_id", "media_type")


class ReviewStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(self, user_id: str, payload: ReviewUpsert) -> ItemReview:
        """Create the user's review of a title or replace its content."""

        try:
            async with self._session_factory() as session:
                is_public = payload.is_public
                if is_public is None:
                    is_public = await profile_default(
                        session, user_id, "default_review_public", fallback=False
                    )
                await upsert(
                    session,
                    ItemReview,
                    {
                        "user_id": user_id,
                        "tmdb_id": payload.tmdb_id,
                        "media_type": payload.media_type,
                        "review_text": payload.review_text,
                        "star_rating": payload.star_rating,
                        "is_public": is_public,
                        "updated_at": utcnow(),
                    },
                    conflict_columns=REVIEW_KEY,
                )
                await session.commit()
                review = await session.scalar(
                    _own_review(user_id, payload.tmdb_id, payload.media_type)
                )
                if review is None:
                    raise UpstreamError("Review was not saved")
                return review
        except SQLAlchemyError as exc:
            raise store_failure("save review", exc) from exc

    async def get_own(
        self, user_id: str, tmdb_id: int, media_type: MediaType
    ) -> ItemReview | None:
        try:
            async with self._session_factory() as session:
                return await session.scalar(_own_review(user_id, tmdb_id, media_type))
        except SQLAlchemyError as exc:
            raise store_failure("load review", exc) from exc


def _own_review(user_id: str, tmdb_id: int, media_type: MediaType):
    return select(ItemReview).where(
        ItemReview.user_id == user_id,
        ItemReview.tmdb_id == tmdb_id,
        ItemReview.media_type == media_type,
    )
