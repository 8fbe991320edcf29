"""Entry point for the BingeBoard FastAPI service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import Settings, settings
from .database import Database
from .db_models import User
from .errors import ConflictError, NotFoundError, RateLimitExceeded, UpstreamError
from .models import (
    CollectionEntryOut,
    CollectionItemCreate,
    CollectionItemOut,
    CollectionItemUpdate,
    LoginRequest,
    ProfileCreate,
    ProfileOut,
    ProfileUpdate,
    ReviewOut,
    ReviewUpsert,
    SignupRequest,
)
from .services.auth import Authenticator
from .services.collection import CollectionStore
from .services.identity import IdentityResolver
from .services.openai import OpenAIClient
from .services.profiles import ProfileService
from .services.recommendations import RecommendationService, RecommendationState
from .services.reviews import ReviewStore
from .services.tmdb import TMDBClient
from .services.visibility import PublicVisibilityFilter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

MEDIA_TYPES = {"movie", "tv"}
COLLECTION_STATUSES = {"wishlist", "currently_watching", "completed"}
LOGIN_FAILED = "Invalid username/email or password."

app: FastAPI


@dataclass
class Services:
    """Everything route handlers need, built once per application lifespan."""

    authenticator: Authenticator
    identity: IdentityResolver
    profiles: ProfileService
    collection: CollectionStore
    reviews: ReviewStore
    visibility: PublicVisibilityFilter
    tmdb: TMDBClient
    recommendations: RecommendationService

    @classmethod
    def build(
        cls,
        app_settings: Settings,
        database: Database,
        *,
        tmdb_http: httpx.AsyncClient,
        ai_http: httpx.AsyncClient,
        recommendation_state: RecommendationState | None = None,
    ) -> "Services":
        session_factory = database.session_factory
        authenticator = Authenticator(app_settings, session_factory)
        collection = CollectionStore(session_factory)
        state = recommendation_state or RecommendationState.from_settings(app_settings)
        return cls(
            authenticator=authenticator,
            identity=IdentityResolver(session_factory, authenticator),
            profiles=ProfileService(session_factory),
            collection=collection,
            reviews=ReviewStore(session_factory),
            visibility=PublicVisibilityFilter(session_factory),
            tmdb=TMDBClient(app_settings, tmdb_http),
            recommendations=RecommendationService(
                state, collection, OpenAIClient(app_settings, ai_http)
            ),
        )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    app_settings: Settings = getattr(fastapi_app.state, "settings", settings)
    exit_stack = AsyncExitStack()
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(app_settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    ai_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(app_settings.ai_api_url),
            timeout=httpx.Timeout(60.0, connect=10.0),
        )
    )
    database = Database(app_settings.database_url)
    await database.create_all()

    fastapi_app.state.database = database
    fastapi_app.state.services = Services.build(
        app_settings, database, tmdb_http=tmdb_http, ai_http=ai_http
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app(app_settings: Settings | None = None) -> FastAPI:
    resolved_settings = app_settings or settings
    fastapi_app = FastAPI(
        title=resolved_settings.app_name,
        description="Track, review and share the movies and series you watch",
        version="1.0.0",
        lifespan=lifespan,
    )
    fastapi_app.state.settings = resolved_settings

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(fastapi_app: FastAPI) -> Services:
    services = getattr(fastapi_app.state, "services", None)
    if not isinstance(services, Services):
        raise RuntimeError("Services not initialised")
    return services


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _parse_body(request: Request, model: type[ModelT]) -> ModelT:
    """Validate the JSON body, rejecting anything malformed with a 400."""

    try:
        payload = await request.json()
    except ValueError:
        # Malformed JSON or a body that is not UTF-8.
        payload = None
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Invalid payload") from exc


def _media_type_or_400(value: str | None) -> str:
    if value not in MEDIA_TYPES:
        raise HTTPException(status_code=400, detail="Invalid type")
    return value


def _int_or_400(value: str | None, detail: str = "Invalid id") -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=detail) from None


def register_routes(fastapi_app: FastAPI) -> None:
    _register_error_handlers(fastapi_app)

    async def current_user(request: Request) -> User | None:
        services = get_services(fastapi_app)
        return await services.authenticator.current_user(_bearer_token(request))

    async def require_user(user: User | None = Depends(current_user)) -> User:
        if user is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return user

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # Authentication ------------------------------------------------------

    @fastapi_app.post("/api/auth/signup", status_code=201)
    async def signup(request: Request) -> dict[str, Any]:
        payload = await _parse_body(request, SignupRequest)
        user = await get_services(fastapi_app).authenticator.sign_up(payload)
        return {"user_id": user.id, "email": user.email}

    @fastapi_app.post("/api/auth/login")
    async def login(request: Request) -> dict[str, Any]:
        payload = await _parse_body(request, LoginRequest)
        services = get_services(fastapi_app)

        email = await services.identity.resolve(payload.identifier)
        user = await services.authenticator.authenticate(email, payload.password)
        if user is None:
            raise HTTPException(status_code=401, detail=LOGIN_FAILED)

        outcome = await services.profiles.bootstrap(user)
        token = await services.authenticator.issue_session(user.id)
        return {
            "access_token": token,
            "token_type": "bearer",
            "bootstrap": outcome.value,
            "created": outcome.created,
        }

    @fastapi_app.post("/api/auth/logout")
    async def logout(request: Request) -> dict[str, bool]:
        token = _bearer_token(request)
        if token:
            await get_services(fastapi_app).authenticator.revoke(token)
        return {"ok": True}

    # Profile -------------------------------------------------------------

    @fastapi_app.get("/api/profile")
    async def get_profile(user: User = Depends(require_user)) -> dict[str, Any]:
        profile = await get_services(fastapi_app).profiles.get(user.id)
        return {"profile": ProfileOut.model_validate(profile).model_dump(mode="json")}

    @fastapi_app.post("/api/profile")
    async def save_profile(
        request: Request, user: User = Depends(require_user)
    ) -> dict[str, bool]:
        payload = await _parse_body(request, ProfileCreate)
        await get_services(fastapi_app).profiles.save(user.id, payload)
        return {"ok": True}

    @fastapi_app.patch("/api/profile")
    async def update_profile(
        request: Request, user: User = Depends(require_user)
    ) -> dict[str, bool]:
        payload = await _parse_body(request, ProfileUpdate)
        await get_services(fastapi_app).profiles.update(user.id, payload)
        return {"ok": True}

    @fastapi_app.post("/api/profile/bootstrap")
    async def bootstrap_profile(user: User = Depends(require_user)) -> dict[str, Any]:
        outcome = await get_services(fastapi_app).profiles.bootstrap(user)
        return {"ok": True, "created": outcome.created, "outcome": outcome.value}

    # Public users --------------------------------------------------------

    @fastapi_app.get("/api/users")
    async def users(
        query: str | None = None, username: str | None = None
    ) -> dict[str, Any]:
        visibility = get_services(fastapi_app).visibility
        if username and username.strip():
            view = await visibility.public_profile(username)
            if view is None:
                raise NotFoundError("User not found")
            return view.model_dump(mode="json")

        summaries = await visibility.search_users(query)
        return {"users": [summary.model_dump() for summary in summaries]}

    # Collection ----------------------------------------------------------

    @fastapi_app.get("/api/collection")
    async def list_collection(
        status: str | None = None,
        media_type: str | None = None,
        user: User = Depends(require_user),
    ) -> dict[str, Any]:
        if status and status not in COLLECTION_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid status")
        if media_type:
            _media_type_or_400(media_type)
        items = await get_services(fastapi_app).collection.list_items(
            user.id, status=status or None, media_type=media_type or None
        )
        return {
            "items": [
                CollectionEntryOut.model_validate(item).model_dump(mode="json")
                for item in items
            ]
        }

    @fastapi_app.post("/api/collection")
    async def create_collection_item(
        request: Request, user: User = Depends(require_user)
    ) -> dict[str, Any]:
        payload = await _parse_body(request, CollectionItemCreate)
        item = await get_services(fastapi_app).collection.create(user.id, payload)
        return {"item": CollectionItemOut.model_validate(item).model_dump(mode="json")}

    @fastapi_app.patch("/api/collection")
    async def update_collection_item(
        request: Request, user: User = Depends(require_user)
    ) -> dict[str, bool]:
        payload = await _parse_body(request, CollectionItemUpdate)
        await get_services(fastapi_app).collection.update(user.id, payload)
        return {"ok": True}

    @fastapi_app.delete("/api/collection")
    async def delete_collection_item(
        id: str | None = None, user: User = Depends(require_user)
    ) -> dict[str, bool]:
        if not id:
            raise HTTPException(status_code=400, detail="Missing id")
        await get_services(fastapi_app).collection.delete(user.id, id)
        return {"ok": True}

    # Reviews -------------------------------------------------------------

    @fastapi_app.get("/api/reviews")
    async def reviews(
        request: Request,
        tmdb_id: str | None = None,
        media_type: str | None = None,
        mine: str | None = None,
    ) -> dict[str, Any]:
        if not tmdb_id or media_type not in MEDIA_TYPES:
            raise HTTPException(status_code=400, detail="Invalid query params")
        title_id = _int_or_400(tmdb_id, "Invalid query params")
        services = get_services(fastapi_app)

        if mine == "1":
            user = await require_user(await current_user(request))
            review = await services.reviews.get_own(user.id, title_id, media_type)
            return {
                "review": ReviewOut.model_validate(review).model_dump(mode="json")
                if review is not None
                else None
            }

        public = await services.visibility.public_reviews(title_id, media_type)
        return {"reviews": [review.model_dump(mode="json") for review in public]}

    @fastapi_app.post("/api/reviews")
    async def upsert_review(
        request: Request, user: User = Depends(require_user)
    ) -> dict[str, Any]:
        payload = await _parse_body(request, ReviewUpsert)
        review = await get_services(fastapi_app).reviews.upsert(user.id, payload)
        return {"review": ReviewOut.model_validate(review).model_dump(mode="json")}

    # Catalog -------------------------------------------------------------

    @fastapi_app.get("/api/tmdb/search")
    async def tmdb_search(
        query: str = "", type: str | None = None, year: str | None = None
    ) -> dict[str, Any]:
        query = query.strip()
        if not query:
            return {"results": []}
        items = await get_services(fastapi_app).tmdb.search(query)
        results = [
            item
            for item in items
            if (type not in MEDIA_TYPES or item.media_type == type)
            and (not year or item.year == year)
        ]
        return {"results": [item.model_dump() for item in results]}

    @fastapi_app.get("/api/tmdb/details/{media_type}/{tmdb_id}")
    async def tmdb_details(media_type: str, tmdb_id: str) -> dict[str, Any]:
        resolved_type = _media_type_or_400(media_type)
        details = await get_services(fastapi_app).tmdb.details(
            resolved_type, _int_or_400(tmdb_id)  # type: ignore[arg-type]
        )
        return {"details": details.model_dump()}

    @fastapi_app.get("/api/tmdb/credits/{media_type}/{tmdb_id}")
    async def tmdb_credits(media_type: str, tmdb_id: str) -> dict[str, Any]:
        resolved_type = _media_type_or_400(media_type)
        creator = await get_services(fastapi_app).tmdb.credits(
            resolved_type, _int_or_400(tmdb_id)  # type: ignore[arg-type]
        )
        return {"creator": creator}

    # Recommendations -----------------------------------------------------

    @fastapi_app.get("/api/ai/watch-next")
    async def watch_next(user: User = Depends(require_user)) -> dict[str, Any]:
        result = await get_services(fastapi_app).recommendations.recommend(user.id)
        return result.to_payload()


def _register_error_handlers(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse({"detail": str(exc) or "Not found"}, status_code=404)

    @fastapi_app.exception_handler(ConflictError)
    async def conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=409)

    @fastapi_app.exception_handler(RateLimitExceeded)
    async def rate_limited(_: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=429)

    @fastapi_app.exception_handler(UpstreamError)
    async def upstream_failure(_: Request, exc: UpstreamError) -> JSONResponse:
        return JSONResponse({"detail": exc.message}, status_code=502)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
