from __future__ import annotations

import json
from pathlib import Path
from typing import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import create_app, get_services
from app.services.openai import OpenAIClient
from app.services.recommendations import RecommendationService, RecommendationState
from app.services.tmdb import TMDBClient


@pytest.fixture
def client(tmp_path: Path, settings_factory) -> Iterator[TestClient]:
    app_settings = settings_factory(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        TMDB_API_KEY="tmdb-token",
        AI_API_KEY="sk-test",
    )
    with TestClient(create_app(app_settings)) as test_client:
        yield test_client


def _signup_and_login(client: TestClient, username: str, password: str = "hunter22") -> dict:
    response = client.post(
        "/api/auth/signup",
        json={
            "email": f"{username}@example.com",
            "password": password,
            "username": username,
            "display_name": username.title(),
        },
    )
    assert response.status_code == 201
    response = client.post(
        "/api/auth/login", json={"identifier": f"{username}@example.com", "password": password}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_healthcheck(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_login_bootstraps_profile_once(client: TestClient) -> None:
    client.post(
        "/api/auth/signup",
        json={
            "email": "neo@example.com",
            "password": "hunter22",
            "username": "Neo",
            "display_name": "Thomas",
        },
    )

    first = client.post(
        "/api/auth/login", json={"identifier": "Neo@Example.com", "password": "hunter22"}
    ).json()
    second = client.post(
        "/api/auth/login", json={"identifier": "NEO", "password": "hunter22"}
    ).json()

    assert first["created"] is True
    assert first["bootstrap"] == "created"
    assert second["created"] is False
    assert second["bootstrap"] == "already_exists"

    headers = {"Authorization": f"Bearer {second['access_token']}"}
    profile = client.get("/api/profile", headers=headers).json()["profile"]
    assert profile["username"] == "neo"
    assert profile["display_name"] == "Thomas"


@pytest.mark.parametrize(
    "credentials",
    [
        {"identifier": "neo", "password": "wrong-password"},
        {"identifier": "nobody", "password": "hunter22"},
        {"identifier": "nobody@example.com", "password": "hunter22"},
    ],
)
def test_login_failures_are_indistinguishable(client: TestClient, credentials) -> None:
    _signup_and_login(client, "neo")

    response = client.post("/api/auth/login", json=credentials)

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid username/email or password."}


def test_signup_validation_and_conflict(client: TestClient) -> None:
    _signup_and_login(client, "neo")

    invalid = client.post(
        "/api/auth/signup",
        json={"email": "bad", "password": "123", "username": "x", "display_name": ""},
    )
    duplicate = client.post(
        "/api/auth/signup",
        json={
            "email": "NEO@example.com",
            "password": "hunter22",
            "username": "other",
            "display_name": "Other",
        },
    )

    assert invalid.status_code == 400
    assert invalid.json() == {"detail": "Invalid payload"}
    assert duplicate.status_code == 409


def test_username_login_needs_a_bootstrapped_profile(client: TestClient) -> None:
    client.post(
        "/api/auth/signup",
        json={
            "email": "fresh@example.com",
            "password": "hunter22",
            "username": "fresh",
            "display_name": "Fresh",
        },
    )

    before = client.post(
        "/api/auth/login", json={"identifier": "fresh", "password": "hunter22"}
    )
    by_email = client.post(
        "/api/auth/login", json={"identifier": "fresh@example.com", "password": "hunter22"}
    )
    after = client.post(
        "/api/auth/login", json={"identifier": "fresh", "password": "hunter22"}
    )

    assert before.status_code == 401
    assert before.json() == {"detail": "Invalid username/email or password."}
    assert by_email.status_code == 200
    assert after.status_code == 200


@pytest.mark.parametrize(
    "body",
    [b'{"identifier": "\xff\xfe", "password": "x"}', b"{not json", b""],
)
def test_undecodable_body_is_invalid_payload(client: TestClient, body: bytes) -> None:
    response = client.post(
        "/api/auth/login",
        content=body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid payload"}


def test_protected_routes_require_a_session(client: TestClient) -> None:
    headers = _signup_and_login(client, "neo")

    assert client.get("/api/collection").status_code == 401
    assert client.get("/api/ai/watch-next").status_code == 401
    assert (
        client.get(
            "/api/reviews", params={"tmdb_id": "603", "media_type": "movie", "mine": "1"}
        ).status_code
        == 401
    )

    client.post("/api/auth/logout", headers=headers)
    assert client.get("/api/profile", headers=headers).status_code == 401


def test_collection_lifecycle(client: TestClient) -> None:
    headers = _signup_and_login(client, "neo")

    created = client.post(
        "/api/collection",
        json={"tmdb_id": 603, "media_type": "movie", "status": "wishlist"},
        headers=headers,
    )
    assert created.status_code == 200
    item = created.json()["item"]
    assert item["is_public"] is True

    updated = client.patch(
        "/api/collection",
        json={"id": item["id"], "status": "completed", "rating": 5, "tags": ["classic"]},
        headers=headers,
    )
    assert updated.json() == {"ok": True}

    listed = client.get(
        "/api/collection", params={"status": "completed"}, headers=headers
    ).json()["items"]
    assert [entry["id"] for entry in listed] == [item["id"]]
    assert listed[0]["note"] == {"rating": 5, "tags": ["classic"], "notes": None}
    assert listed[0]["override"] is None

    bad_rating = client.patch(
        "/api/collection", json={"id": item["id"], "rating": 6}, headers=headers
    )
    assert bad_rating.status_code == 400

    deleted = client.delete("/api/collection", params={"id": item["id"]}, headers=headers)
    assert deleted.json() == {"ok": True}
    missing = client.delete("/api/collection", params={"id": item["id"]}, headers=headers)
    assert missing.status_code == 404
    assert client.get("/api/collection", headers=headers).json()["items"] == []


def test_other_users_items_cannot_be_modified(client: TestClient) -> None:
    owner = _signup_and_login(client, "owner")
    intruder = _signup_and_login(client, "intruder")
    item = client.post(
        "/api/collection",
        json={"tmdb_id": 603, "media_type": "movie", "status": "wishlist"},
        headers=owner,
    ).json()["item"]

    response = client.patch(
        "/api/collection", json={"id": item["id"], "status": "completed"}, headers=intruder
    )

    assert response.status_code == 404
    assert client.get("/api/collection", headers=intruder).json()["items"] == []


def test_reviews_and_public_profile(client: TestClient) -> None:
    critic = _signup_and_login(client, "critic")
    recluse = _signup_and_login(client, "recluse")

    for rating in (3, 5):
        response = client.post(
            "/api/reviews",
            json={
                "tmdb_id": 603,
                "media_type": "movie",
                "review_text": f"{rating} stars.",
                "star_rating": rating,
            },
            headers=critic,
        )
        assert response.status_code == 200

    client.patch("/api/profile", json={"profile_public": False}, headers=recluse)
    client.post(
        "/api/reviews",
        json={"tmdb_id": 603, "media_type": "movie", "review_text": "Hidden.", "star_rating": 1},
        headers=recluse,
    )

    public = client.get(
        "/api/reviews", params={"tmdb_id": "603", "media_type": "movie"}
    ).json()["reviews"]
    assert [(review["username"], review["star_rating"]) for review in public] == [
        ("critic", 5)
    ]

    mine = client.get(
        "/api/reviews",
        params={"tmdb_id": "603", "media_type": "movie", "mine": "1"},
        headers=recluse,
    ).json()["review"]
    assert mine["review_text"] == "Hidden."

    assert client.get("/api/users", params={"username": "recluse"}).status_code == 404
    page = client.get("/api/users", params={"username": "Critic"}).json()
    assert page["profile"]["username"] == "critic"
    assert [review["star_rating"] for review in page["reviews"]] == [5]

    users = client.get("/api/users").json()["users"]
    assert [user["username"] for user in users] == ["critic"]

    bad_query = client.get("/api/reviews", params={"tmdb_id": "603", "media_type": "book"})
    assert bad_query.status_code == 400


def test_tmdb_routes_use_catalog_client(client: TestClient) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/3/genre/"):
            return httpx.Response(200, json={"genres": [{"id": 28, "name": "Action"}]})
        if path == "/3/search/movie":
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"id": 603, "title": "The Matrix", "release_date": "1999-03-31"},
                        {"id": 604, "title": "The Matrix Reloaded", "release_date": "2003-05-15"},
                    ]
                },
            )
        if path == "/3/search/tv":
            return httpx.Response(200, json={"results": [{"id": 1, "name": "Matrix"}]})
        if path == "/3/movie/603/credits":
            return httpx.Response(200, json={"crew": [{"job": "Director", "name": "Lana Wachowski"}]})
        return httpx.Response(404, json={"status_message": "not found"})

    services = get_services(client.app)
    services.tmdb = TMDBClient(
        client.app.state.settings,
        httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://api.themoviedb.org/3",
        ),
    )

    results = client.get(
        "/api/tmdb/search", params={"query": "matrix", "type": "movie", "year": "1999"}
    ).json()["results"]
    assert [result["id"] for result in results] == [603]

    assert client.get("/api/tmdb/search", params={"query": "  "}).json() == {"results": []}
    assert client.get("/api/tmdb/credits/movie/603").json() == {"creator": "Lana Wachowski"}
    assert client.get("/api/tmdb/details/book/603").status_code == 400
    assert client.get("/api/tmdb/details/movie/abc").status_code == 400
    assert client.get("/api/tmdb/details/movie/999").status_code == 502


def test_watch_next_caches_and_rate_limits(client: TestClient) -> None:
    headers = _signup_and_login(client, "neo")
    client.post(
        "/api/collection",
        json={"tmdb_id": 603, "media_type": "movie", "status": "completed"},
        headers=headers,
    )
    prompts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        prompts.append(json.loads(request.content)["messages"][1]["content"])
        content = json.dumps(
            {
                "recommendations": [
                    {"tmdb_id": 604, "media_type": "movie", "reason": "More Matrix."}
                ]
            }
        )
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    services = get_services(client.app)
    app_settings = client.app.state.settings
    services.recommendations = RecommendationService(
        RecommendationState.from_settings(app_settings),
        services.collection,
        OpenAIClient(
            app_settings,
            httpx.AsyncClient(
                transport=httpx.MockTransport(handler),
                base_url="https://api.openai.com/v1",
            ),
        ),
    )

    responses = [client.get("/api/ai/watch-next", headers=headers) for _ in range(7)]

    assert [response.status_code for response in responses] == [200] * 6 + [429]
    assert responses[0].json() == {
        "recommendations": [{"tmdb_id": 604, "media_type": "movie", "reason": "More Matrix."}],
        "cached": False,
    }
    assert all(response.json()["cached"] is True for response in responses[1:6])
    assert len(prompts) == 1
    assert '"tmdb_id": 603' in prompts[0]
