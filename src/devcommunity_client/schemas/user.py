"""Schemas for users, authentication payloads and profile updates."""
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    field_validator,
)

from .common import FileUpload, WireModel, coerce_count, coerce_id, unwrap_envelope

ID_ALIASES = AliasChoices("id", "_id", "userId")
DISPLAY_NAME_ALIASES = AliasChoices(
    "displayName", "display_name", "username", "userName", "fullName", "name",
)
AVATAR_ALIASES = AliasChoices("avatarUrl", "avatar_url", "avatar")


class UserIdentity(WireModel):
    """
    The signed-in user's identity as held by the session.

    `id` and `display_name` must be non-empty; anything persisted that fails
    this check is treated as corrupted session state.
    """

    id: str = Field(min_length=1, validation_alias=ID_ALIASES, serialization_alias="id")
    display_name: str = Field(
        min_length=1,
        validation_alias=DISPLAY_NAME_ALIASES,
        serialization_alias="displayName",
    )
    avatar_url: str | None = Field(
        default=None, validation_alias=AVATAR_ALIASES, serialization_alias="avatarUrl",
    )
    bio: str | None = None
    score: int = 0
    email: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return coerce_id(value)

    @field_validator("display_name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, value: Any) -> Any:
        return 0 if value is None else value


class Author(WireModel):
    """Denormalized author copy embedded in posts and comments."""

    id: str = Field(validation_alias=ID_ALIASES, serialization_alias="id")
    display_name: str | None = Field(
        default=None,
        validation_alias=DISPLAY_NAME_ALIASES,
        serialization_alias="displayName",
    )
    avatar_url: str | None = Field(
        default=None, validation_alias=AVATAR_ALIASES, serialization_alias="avatarUrl",
    )
    score: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return coerce_id(value)

    @classmethod
    def from_identity(cls, user: UserIdentity) -> "Author":
        return cls(
            id=user.id,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            score=user.score,
        )


def identity_changes(payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    Map a partial user payload (any backend spelling) to UserIdentity field names.

    Used to merge profile/avatar responses into the stored identity, where the
    response may carry only the changed fields.
    """
    changes = {}
    for name, info in UserIdentity.model_fields.items():
        alias = info.validation_alias
        keys = alias.choices if isinstance(alias, AliasChoices) else [name]
        for key in keys:
            if isinstance(key, str) and key in payload:
                changes[name] = payload[key]
                break
    return changes


def coerce_author(value: Any) -> Any:
    """An author given only as an id string becomes an Author with just the id."""
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return {"id": str(value)}
    return value


# Versioned auth contracts. The backend has answered login/registration with
# `{user, token}` (v1) and later `{user, accessToken}` (v2).
class AuthResponseV1(BaseModel):
    """Auth contract v1: `{user, token}`."""

    user: UserIdentity
    token: str = Field(min_length=1)


class AuthResponseV2(BaseModel):
    """Auth contract v2: `{user, accessToken}`."""

    user: UserIdentity
    access_token: str = Field(
        min_length=1, validation_alias=AliasChoices("accessToken", "access_token"),
    )


def _auth_contract(value: Any) -> str:
    if isinstance(value, dict):
        return "v2" if ("accessToken" in value or "access_token" in value) else "v1"
    return "v2" if isinstance(value, AuthResponseV2) else "v1"


AuthResponse = Annotated[
    Union[Annotated[AuthResponseV1, Tag("v1")], Annotated[AuthResponseV2, Tag("v2")]],
    Discriminator(_auth_contract),
]

_auth_response_adapter: TypeAdapter[AuthResponseV1 | AuthResponseV2] = TypeAdapter(AuthResponse)


@dataclass
class AuthResult:
    """Canonical result of login/registration."""

    user: UserIdentity
    token: str


def normalize_auth_response(payload: Any) -> AuthResult:
    """
    Convert any supported auth response shape into an AuthResult.

    Raises:
        pydantic.ValidationError: If the payload matches no known contract.
    """
    parsed = _auth_response_adapter.validate_python(unwrap_envelope(payload))
    if isinstance(parsed, AuthResponseV2):
        return AuthResult(user=parsed.user, token=parsed.access_token)
    return AuthResult(user=parsed.user, token=parsed.token)


class LoginCredentials(BaseModel):
    """Body for POST /users/login."""

    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class RegisterData(BaseModel):
    """Fields for POST /users/register (sent as multipart)."""

    display_name: str = Field(min_length=1)
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    avatar: FileUpload | None = None

    def to_form(self) -> dict[str, str]:
        # `username` is kept for backends still on the older registration contract
        return {
            "displayName": self.display_name,
            "username": self.display_name,
            "email": self.email,
            "password": self.password,
        }


class ProfileUpdate(BaseModel):
    """Body for PUT /users/profile. Only provided fields are sent."""

    display_name: str | None = None
    bio: str | None = None

    def to_json(self) -> dict[str, str]:
        body = {}
        if self.display_name is not None:
            body["displayName"] = self.display_name
        if self.bio is not None:
            body["bio"] = self.bio
        return body


def user_payload(payload: Any) -> dict[str, Any]:
    """The user object of a profile response (`{...}`, `{user: {...}}`, or wrapped)."""
    body = unwrap_envelope(payload)
    if isinstance(body, dict) and isinstance(body.get("user"), dict):
        body = body["user"]
    return body if isinstance(body, dict) else {}


def normalize_user(payload: Any) -> UserIdentity:
    """
    Parse a user/profile response into a UserIdentity.

    Raises:
        pydantic.ValidationError: If the payload carries no valid user.
    """
    return UserIdentity.model_validate(user_payload(payload))


class UserStats(WireModel):
    """Activity totals shown on a profile."""

    posts_count: int = Field(
        default=0, validation_alias=AliasChoices("postsCount", "posts_count", "posts"),
        serialization_alias="postsCount",
    )
    comments_count: int = Field(
        default=0, validation_alias=AliasChoices("commentsCount", "comments_count", "comments"),
        serialization_alias="commentsCount",
    )
    total_votes: int = Field(
        default=0, validation_alias=AliasChoices("totalVotes", "total_votes", "votes"),
        serialization_alias="totalVotes",
    )
    join_date: str | None = Field(
        default=None, validation_alias=AliasChoices("joinDate", "join_date", "createdAt"),
        serialization_alias="joinDate",
    )

    @field_validator("posts_count", "comments_count", "total_votes", mode="before")
    @classmethod
    def _coerce_counts(cls, value: Any) -> Any:
        return coerce_count(value)


def normalize_user_stats(payload: Any) -> UserStats:
    body = unwrap_envelope(payload)
    if isinstance(body, dict) and isinstance(body.get("stats"), dict):
        body = body["stats"]
    return UserStats.model_validate(body)
