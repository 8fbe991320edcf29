"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.db_models import Profile, User  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return settings isolated from the developer's environment."""

    base: dict[str, Any] = {"TMDB_API_KEY": None, "AI_API_KEY": None}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return build_settings


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'bingeboard.db'}"


@pytest.fixture
def database(database_url: str) -> Database:
    """A database bound to a per-test SQLite file; create tables in the test loop."""

    return Database(database_url)


SeedUser = Callable[..., Awaitable[User]]


@pytest.fixture
def seed_user(database: Database) -> SeedUser:
    """Insert a user (and by default a profile) without hashing a password."""

    async def _seed(
        username: str,
        *,
        email: str | None = None,
        with_profile: bool = True,
        profile_public: bool = True,
        default_item_public: bool = True,
        default_review_public: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> User:
        user = User(
            email=email or f"{username}@example.com",
            password_hash="unused",
            user_metadata=metadata,
        )
        async with database.session_factory() as session:
            session.add(user)
            await session.flush()
            if with_profile:
                session.add(
                    Profile(
                        user_id=user.id,
                        username=username,
                        display_name=username.title(),
                        profile_public=profile_public,
                        default_item_public=default_item_public,
                        default_review_public=default_review_public,
                    )
                )
            await session.commit()
        return user

    return _seed
