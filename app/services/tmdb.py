"""Client for The Movie Database (TMDB) catalog API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import UpstreamError
from ..models import MediaType, NormalizedMediaItem
from ..utils import year_from_date

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"


class TMDBClient:
    """Searches TMDB and normalizes movie and series payloads into one shape.

    Genre id to name lookups are fetched once per media type and kept for
    the lifetime of the client.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._genres: dict[str, dict[int, str]] = {"movie": {}, "tv": {}}

    async def search(self, query: str) -> list[NormalizedMediaItem]:
        """Search movies and series, movies first."""

        query = query.strip()
        if not query:
            return []

        await asyncio.gather(self._ensure_genres("movie"), self._ensure_genres("tv"))
        movies, shows = await asyncio.gather(
            self._get("/search/movie", params={"query": query}),
            self._get("/search/tv", params={"query": query}),
        )
        return [
            *(self.normalize(entry, "movie") for entry in _results(movies)),
            *(self.normalize(entry, "tv") for entry in _results(shows)),
        ]

    async def details(self, media_type: MediaType, tmdb_id: int) -> NormalizedMediaItem:
        payload = await self._get(f"/{media_type}/{tmdb_id}")
        genres = [
            genre["name"]
            for genre in payload.get("genres") or []
            if isinstance(genre, dict) and genre.get("name")
        ]
        return self.normalize(payload, media_type, genres=genres)

    async def credits(self, media_type: MediaType, tmdb_id: int) -> str | None:
        """Return the director of a movie or the creators of a series."""

        if media_type == "movie":
            payload = await self._get(f"/movie/{tmdb_id}/credits")
            for person in payload.get("crew") or []:
                if person.get("job") == "Director":
                    return person.get("name")
            return None

        payload = await self._get(f"/tv/{tmdb_id}")
        creators = [
            creator["name"]
            for creator in payload.get("created_by") or []
            if creator.get("name")
        ]
        if not creators:
            return None
        return ", ".join(creators)

    def normalize(
        self,
        entry: dict[str, Any],
        media_type: MediaType,
        *,
        genres: list[str] | None = None,
    ) -> NormalizedMediaItem:
        if media_type == "movie":
            title = entry.get("title")
            release_date = entry.get("release_date")
        else:
            title = entry.get("name")
            release_date = entry.get("first_air_date")
        release_date = release_date or None

        if genres is None:
            lookup = self._genres[media_type]
            genres = [
                lookup[genre_id]
                for genre_id in entry.get("genre_ids") or []
                if genre_id in lookup
            ]

        return NormalizedMediaItem(
            id=int(entry["id"]),
            media_type=media_type,
            title=title or UNTITLED,
            overview=entry.get("overview") or "",
            release_date=release_date,
            year=year_from_date(release_date),
            genres=genres,
            poster_path=entry.get("poster_path"),
        )

    async def _ensure_genres(self, media_type: MediaType) -> None:
        cache = self._genres[media_type]
        if cache:
            return
        payload = await self._get(f"/genre/{media_type}/list")
        for genre in payload.get("genres") or []:
            cache[int(genre["id"])] = genre["name"]

    async def _get(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        api_key = self._settings.tmdb_api_key
        if not api_key:
            raise UpstreamError("TMDB API key is not configured")

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.get(path, params=params, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", path, exc)
            raise UpstreamError("TMDB request failed") from exc

        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s failed with %s: %s",
                path,
                response.status_code,
                response.text,
            )
            raise UpstreamError(
                f"TMDB request failed: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("TMDB request to %s returned a non-JSON body", path)
            raise UpstreamError(
                "TMDB returned an invalid body", status_code=response.status_code
            ) from exc


def _results(payload: dict[str, Any]) -> list[dict[str, Any]]:
    results = payload.get("results") or []
    return [entry for entry in results if isinstance(entry, dict)]
