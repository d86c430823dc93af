"""Schemas for the leaderboard."""
from typing import Any, Literal, get_args

from pydantic import AliasChoices, BaseModel, Field, model_validator

from .common import Page, WireModel, normalize_page, unwrap_envelope
from .user import UserIdentity

LeaderboardPeriod = Literal["daily", "weekly", "monthly", "all"]
LeaderboardCategory = Literal["posts", "comments", "votes", "score"]

LEADERBOARD_PERIODS: tuple[str, ...] = get_args(LeaderboardPeriod)
LEADERBOARD_CATEGORIES: tuple[str, ...] = get_args(LeaderboardCategory)


class LeaderboardEntry(WireModel):
    """One ranked user."""

    user: UserIdentity
    rank: int = 0
    score: int = 0

    @model_validator(mode="before")
    @classmethod
    def _accept_flat_user(cls, data: Any) -> Any:
        # Some backends return ranked users directly: {_id, username, score}
        if isinstance(data, dict) and "user" not in data:
            return {"user": data, "rank": data.get("rank") or 0, "score": data.get("score") or 0}
        return data


class UserRank(WireModel):
    """A user's position on the leaderboard."""

    rank: int = 0
    score: int = 0
    total_users: int = Field(
        default=0,
        validation_alias=AliasChoices("totalUsers", "total_users"),
        serialization_alias="totalUsers",
    )


class LeaderboardStats(WireModel):
    """Server-side aggregates over all ranked users."""

    total_users: int = Field(
        default=0,
        validation_alias=AliasChoices("totalUsers", "total_users"),
        serialization_alias="totalUsers",
    )
    average_score: float = Field(
        default=0.0,
        validation_alias=AliasChoices("averageScore", "average_score"),
        serialization_alias="averageScore",
    )
    highest_score: int = Field(
        default=0,
        validation_alias=AliasChoices("highestScore", "highest_score"),
        serialization_alias="highestScore",
    )
    active_users: int = Field(
        default=0,
        validation_alias=AliasChoices("activeUsers", "active_users"),
        serialization_alias="activeUsers",
    )


class CommunityStats(BaseModel):
    """Aggregate numbers shown on the landing page."""

    users: int = 0
    posts: int = 0
    total_score: int = 0


def _fill_ranks(entries: list[LeaderboardEntry], offset: int = 0) -> None:
    """Missing ranks are taken from list position, counting from `offset`."""
    for position, entry in enumerate(entries, start=offset + 1):
        if entry.rank <= 0:
            entry.rank = position


def normalize_leaderboard(payload: Any) -> list[LeaderboardEntry]:
    """
    Parse the leaderboard listing.

    Accepts a bare list, `{leaderboard: [...]}`, `{data: [...]}` or either inside
    the response wrapper. Missing ranks are filled from list position.
    """
    body = unwrap_envelope(payload)
    if isinstance(body, dict):
        for key in ("leaderboard", "users", "data", "items"):
            if isinstance(body.get(key), list):
                body = body[key]
                break
        else:
            body = []
    if not isinstance(body, list):
        return []

    entries = [LeaderboardEntry.model_validate(item) for item in body]
    _fill_ranks(entries)
    return entries


def normalize_leaderboard_page(payload: Any) -> Page[LeaderboardEntry]:
    """Parse one page of the leaderboard; missing ranks continue from earlier pages."""
    page = normalize_page(payload, LeaderboardEntry, "leaderboard")
    _fill_ranks(page.items, (page.page - 1) * page.limit)
    return page


def normalize_user_rank(payload: Any) -> UserRank:
    return UserRank.model_validate(unwrap_envelope(payload))


def normalize_leaderboard_stats(payload: Any) -> LeaderboardStats:
    body = unwrap_envelope(payload)
    if isinstance(body, dict) and isinstance(body.get("stats"), dict):
        body = body["stats"]
    return LeaderboardStats.model_validate(body)
