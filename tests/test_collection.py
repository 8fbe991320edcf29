from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from app.db_models import ItemNote, ItemOverride
from app.errors import NotFoundError
from app.models import CollectionItemCreate, CollectionItemUpdate
from app.services.collection import CollectionStore


def test_create_uses_profile_default_visibility(database, seed_user) -> None:
    store = CollectionStore(database.session_factory)

    async def runner():
        await database.create_all()
        private_by_default = await seed_user("quiet", default_item_public=False)
        no_profile = await seed_user("fresh", with_profile=False)
        inherited = await store.create(
            private_by_default.id,
            CollectionItemCreate(tmdb_id=603, media_type="movie", status="wishlist"),
        )
        explicit = await store.create(
            private_by_default.id,
            CollectionItemCreate(
                tmdb_id=1399, media_type="tv", status="completed", is_public=True
            ),
        )
        fallback = await store.create(
            no_profile.id,
            CollectionItemCreate(tmdb_id=603, media_type="movie", status="wishlist"),
        )
        await database.dispose()
        return inherited, explicit, fallback

    inherited, explicit, fallback = asyncio.run(runner())

    assert inherited.is_public is False
    assert explicit.is_public is True
    assert fallback.is_public is True


def test_list_filters_and_only_returns_own_items(database, seed_user) -> None:
    store = CollectionStore(database.session_factory)

    async def runner():
        await database.create_all()
        owner = await seed_user("owner")
        stranger = await seed_user("stranger")
        for tmdb_id, media_type, status in (
            (603, "movie", "completed"),
            (1399, "tv", "currently_watching"),
            (27205, "movie", "wishlist"),
        ):
            await store.create(
                owner.id,
                CollectionItemCreate(tmdb_id=tmdb_id, media_type=media_type, status=status),
            )
        await store.create(
            stranger.id,
            CollectionItemCreate(tmdb_id=550, media_type="movie", status="completed"),
        )

        everything = await store.list_items(owner.id)
        movies = await store.list_items(owner.id, media_type="movie")
        completed_movies = await store.list_items(
            owner.id, status="completed", media_type="movie"
        )
        await database.dispose()
        return everything, movies, completed_movies

    everything, movies, completed_movies = asyncio.run(runner())

    assert {item.tmdb_id for item in everything} == {603, 1399, 27205}
    assert {item.tmdb_id for item in movies} == {603, 27205}
    assert [item.tmdb_id for item in completed_movies] == [603]


def test_update_writes_note_and_override_groups(database, seed_user) -> None:
    store = CollectionStore(database.session_factory)

    async def runner():
        await database.create_all()
        user = await seed_user("critic")
        item = await store.create(
            user.id,
            CollectionItemCreate(tmdb_id=603, media_type="movie", status="wishlist"),
        )
        await store.update(
            user.id,
            CollectionItemUpdate.model_validate(
                {
                    "id": item.id,
                    "status": "completed",
                    "rating": 5,
                    "tags": ["sci-fi", "rewatch"],
                    "notes": "Still holds up.",
                    "custom_title": "The Matrix (Director's Cut)",
                }
            ),
        )
        # Touching only the rating clears the other note fields.
        await store.update(
            user.id, CollectionItemUpdate.model_validate({"id": item.id, "rating": 4})
        )
        [entry] = await store.list_items(user.id)
        await database.dispose()
        return entry

    entry = asyncio.run(runner())

    assert entry.status == "completed"
    assert entry.note.rating == 4
    assert entry.note.tags is None
    assert entry.note.notes is None
    assert entry.override.custom_title == "The Matrix (Director's Cut)"
    assert entry.override.custom_creator is None


def test_update_and_delete_other_users_item_is_not_found(database, seed_user) -> None:
    store = CollectionStore(database.session_factory)

    async def runner():
        await database.create_all()
        owner = await seed_user("owner")
        intruder = await seed_user("intruder")
        item = await store.create(
            owner.id,
            CollectionItemCreate(tmdb_id=603, media_type="movie", status="wishlist"),
        )
        with pytest.raises(NotFoundError):
            await store.update(
                intruder.id,
                CollectionItemUpdate.model_validate({"id": item.id, "status": "completed"}),
            )
        with pytest.raises(NotFoundError):
            await store.delete(intruder.id, item.id)
        with pytest.raises(NotFoundError):
            await store.delete(owner.id, str(uuid.uuid4()))
        [untouched] = await store.list_items(owner.id)
        await database.dispose()
        return untouched

    untouched = asyncio.run(runner())
    assert untouched.status == "wishlist"


def test_delete_cascades_to_note_and_override(database, seed_user) -> None:
    store = CollectionStore(database.session_factory)

    async def runner():
        await database.create_all()
        user = await seed_user("tidy")
        item = await store.create(
            user.id,
            CollectionItemCreate(tmdb_id=603, media_type="movie", status="completed"),
        )
        await store.update(
            user.id,
            CollectionItemUpdate.model_validate(
                {"id": item.id, "notes": "gone soon", "custom_creator": "Someone"}
            ),
        )
        await store.delete(user.id, item.id)
        async with database.session_factory() as session:
            notes = await session.scalar(select(func.count()).select_from(ItemNote))
            overrides = await session.scalar(
                select(func.count()).select_from(ItemOverride)
            )
        remaining = await store.list_items(user.id)
        await database.dispose()
        return notes, overrides, remaining

    notes, overrides, remaining = asyncio.run(runner())

    assert notes == 0
    assert overrides == 0
    assert list(remaining) == []


def test_recent_is_limited(database, seed_user) -> None:
    store = CollectionStore(database.session_factory)

    async def runner():
        await database.create_all()
        user = await seed_user("binger")
        for tmdb_id in range(1, 6):
            await store.create(
                user.id,
                CollectionItemCreate(tmdb_id=tmdb_id, media_type="movie", status="completed"),
            )
        recent = await store.recent(user.id, limit=3)
        await database.dispose()
        return recent

    assert len(asyncio.run(runner())) == 3
