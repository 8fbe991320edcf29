"""Owner-scoped access to collection items, notes and overrides."""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..database import upsert
from ..db_models import CollectionItem, ItemNote, ItemOverride, Profile
from ..errors import NotFoundError, UpstreamError
from ..models import (
    CollectionItemCreate,
    CollectionItemUpdate,
    CollectionStatus,
    MediaType,
)
from ..utils import utcnow

logger = logging.getLogger(__name__)


class CollectionStore:
    """CRUD over a user's collection.

    Every query is filtered by the caller's ``user_id``; there is no code
    path that reads or writes another identity's rows.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_items(
        self,
        user_id: str,
        *,
        status: CollectionStatus | None = None,
        media_type: MediaType | None = None,
    ) -> Sequence[CollectionItem]:
        """Return the user's items, newest first, with notes and overrides."""

        statement = (
            select(CollectionItem)
            .options(
                selectinload(CollectionItem.note),
                selectinload(CollectionItem.override),
            )
            .where(CollectionItem.user_id == user_id)
            .order_by(CollectionItem.added_at.desc())
        )
        if status:
            statement = statement.where(CollectionItem.status == status)
        if media_type:
            statement = statement.where(CollectionItem.media_type == media_type)

        try:
            async with self._session_factory() as session:
                result = await session.scalars(statement)
                return result.all()
        except SQLAlchemyError as exc:
            raise store_failure("list collection", exc) from exc

    async def recent(self, user_id: str, *, limit: int) -> Sequence[CollectionItem]:
        """Return the most recently updated items."""

        statement = (
            select(CollectionItem)
            .where(CollectionItem.user_id == user_id)
            .order_by(CollectionItem.updated_at.desc())
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                result = await session.scalars(statement)
                return result.all()
        except SQLAlchemyError as exc:
            raise store_failure("load recent collection", exc) from exc

    async def create(
        self, user_id: str, payload: CollectionItemCreate
    ) -> CollectionItem:
        try:
            async with self._session_factory() as session:
                is_public = payload.is_public
                if is_public is None:
                    is_public = await profile_default(
                        session, user_id, "default_item_public", fallback=True
                    )
                item = CollectionItem(
                    user_id=user_id,
                    tmdb_id=payload.tmdb_id,
                    media_type=payload.media_type,
                    status=payload.status,
                    is_public=is_public,
                )
                session.add(item)
                await session.commit()
                return item
        except SQLAlchemyError as exc:
            raise store_failure("create collection item", exc) from exc

    async def update(self, user_id: str, payload: CollectionItemUpdate) -> None:
        """Apply a partial update.

        The item, its note and its override are written in separate
        commits; a failure part way through leaves earlier writes in place.
        """

        try:
            async with self._session_factory() as session:
                item = await session.scalar(
                    select(CollectionItem).where(
                        CollectionItem.id == payload.id,
                        CollectionItem.user_id == user_id,
                    )
                )
                if item is None:
                    raise NotFoundError("Collection item not found")

                changes = payload.core_changes()
                if changes:
                    for name, value in changes.items():
                        setattr(item, name, value)
                    await session.commit()

                note = payload.note_values()
                if note is not None:
                    await upsert(
                        session,
                        ItemNote,
                        {"collection_item_id": payload.id, **note, "updated_at": utcnow()},
                        conflict_columns=("collection_item_id",),
                    )
                    await session.commit()

                override = payload.override_values()
                if override is not None:
                    await upsert(
                        session,
                        ItemOverride,
                        {
                            "collection_item_id": payload.id,
                            **override,
                            "updated_at": utcnow(),
                        },
                        conflict_columns=("collection_item_id",),
                    )
                    await session.commit()
        except SQLAlchemyError as exc:
            raise store_failure("update collection item", exc) from exc

    async def delete(self, user_id: str, item_id: str) -> None:
        try:
            async with self._session_factory() as session:
                item = await session.scalar(
                    select(CollectionItem)
                    .options(
                        selectinload(CollectionItem.note),
                        selectinload(CollectionItem.override),
                    )
                    .where(
                        CollectionItem.id == item_id,
                        CollectionItem.user_id == user_id,
                    )
                )
                if item is None:
                    raise NotFoundError("Collection item not found")
                await session.delete(item)
                await session.commit()
        except SQLAlchemyError as exc:
            raise store_failure("delete collection item", exc) from exc


async def profile_default(
    session: AsyncSession, user_id: str, column: str, *, fallback: bool
) -> bool:
    """Return a profile-level visibility default, ``fallback`` without a profile."""

    value = await session.scalar(
        select(getattr(Profile, column)).where(Profile.user_id == user_id)
    )
    return fallback if value is None else bool(value)


def store_failure(action: str, exc: SQLAlchemyError) -> UpstreamError:
    logger.warning("Failed to %s: %s", action, exc)
    return UpstreamError(f"Failed to {action}")
