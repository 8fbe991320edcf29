"""Pydantic models describing request and response payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .utils import DISPLAY_NAME_MAX_LENGTH, USERNAME_RE, is_email

MediaType = Literal["movie", "tv"]
CollectionStatus = Literal["wishlist", "currently_watching", "completed"]

NOTE_FIELDS: tuple[str, ...] = ("rating", "tags", "notes")
OVERRIDE_FIELDS: tuple[str, ...] = (
    "custom_title",
    "custom_creator",
    "custom_release_date",
)


class NormalizedMediaItem(BaseModel):
    """Catalog entry in one shape regardless of movie or series origin."""

    id: int
    media_type: MediaType
    title: str
    overview: str = ""
    release_date: str | None = None
    year: str | None = None
    genres: list[str] = Field(default_factory=list)
    poster_path: str | None = None
    creator: str | None = None


class Recommendation(BaseModel):
    tmdb_id: int
    media_type: MediaType
    reason: str


# Requests -----------------------------------------------------------------


class SignupRequest(BaseModel):
    email: str
    password: str = Field(min_length=6)
    username: str = Field(pattern=USERNAME_RE.pattern)
    display_name: str = Field(min_length=1, max_length=DISPLAY_NAME_MAX_LENGTH)

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, value: str) -> str:
        normalised = value.strip().lower()
        if not is_email(normalised):
            raise ValueError("A valid email address is required")
        return normalised

    @field_validator("username", "display_name", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class LoginRequest(BaseModel):
    identifier: str = Field(min_length=1)
    password: str = Field(min_length=1)

    @field_validator("identifier", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class ProfileCreate(BaseModel):
    """Onboarding payload used when no profile was bootstrapped at login."""

    username: str = Field(pattern=USERNAME_RE.pattern)
    display_name: str | None = Field(default=None, max_length=DISPLAY_NAME_MAX_LENGTH)
    profile_public: bool | None = None


class ProfileUpdate(BaseModel):
    username: str | None = Field(default=None, pattern=USERNAME_RE.pattern)
    display_name: str | None = Field(default=None, max_length=DISPLAY_NAME_MAX_LENGTH)
    profile_public: bool | None = None
    default_item_public: bool | None = None
    default_review_public: bool | None = None

    @model_validator(mode="after")
    def _reject_null_flags(self) -> "ProfileUpdate":
        for name in (
            "username",
            "profile_public",
            "default_item_public",
            "default_review_public",
        ):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} may not be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Return only the fields supplied by the caller."""

        data = self.model_dump(include=self.model_fields_set)
        if data.get("username"):
            data["username"] = data["username"].lower()
        return data


class CollectionItemCreate(BaseModel):
    tmdb_id: int
    media_type: MediaType
    status: CollectionStatus
    is_public: bool | None = None


class CollectionItemUpdate(BaseModel):
    """Partial update; note and override groups are written only if touched."""

    id: str = Field(
        pattern=r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
    )
    status: CollectionStatus | None = None
    is_public: bool | None = None
    rating: int | None = Field(default=None, ge=1, le=5)
    tags: list[str] | None = None
    notes: str | None = None
    custom_title: str | None = None
    custom_creator: str | None = None
    custom_release_date: str | None = None

    @model_validator(mode="after")
    def _reject_null_core_fields(self) -> "CollectionItemUpdate":
        for name in ("status", "is_public"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} may not be null")
        return self

    def core_changes(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in ("status", "is_public")
            if name in self.model_fields_set
        }

    def note_values(self) -> dict[str, Any] | None:
        """Return the note row to upsert, or ``None`` if no note field was sent."""

        return self._group_values(NOTE_FIELDS)

    def override_values(self) -> dict[str, Any] | None:
        return self._group_values(OVERRIDE_FIELDS)

    def _group_values(self, fields: tuple[str, ...]) -> dict[str, Any] | None:
        if not self.model_fields_set.intersection(fields):
            return None
        # Fields of a touched group that were not sent are cleared.
        return {name: getattr(self, name) for name in fields}


class ReviewUpsert(BaseModel):
    tmdb_id: int
    media_type: MediaType
    review_text: str = Field(min_length=1, max_length=2000)
    star_rating: int = Field(ge=1, le=5)
    is_public: bool | None = None


# Responses ----------------------------------------------------------------


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    profile_public: bool
    default_item_public: bool
    default_review_public: bool
    created_at: datetime
    updated_at: datetime


class PublicProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    profile_public: bool


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    username: str
    display_name: str | None = None


class ItemNoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rating: int | None = None
    tags: list[str] | None = None
    notes: str | None = None


class ItemOverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    custom_title: str | None = None
    custom_creator: str | None = None
    custom_release_date: str | None = None


class CollectionItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    tmdb_id: int
    media_type: MediaType
    status: CollectionStatus
    is_public: bool
    added_at: datetime
    updated_at: datetime


class CollectionEntryOut(CollectionItemOut):
    """Collection item as listed for its owner, with note and override."""

    note: ItemNoteOut | None = None
    override: ItemOverrideOut | None = None


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    tmdb_id: int
    media_type: MediaType
    review_text: str
    star_rating: int
    is_public: bool
    created_at: datetime
    updated_at: datetime


class PublicReviewOut(ReviewOut):
    username: str


class PublicProfileView(BaseModel):
    """Everything about a user that third parties may see."""

    profile: PublicProfileOut
    items: list[CollectionItemOut] = Field(default_factory=list)
    reviews: list[ReviewOut] = Field(default_factory=list)
