"""Service layer for the leaderboard and landing-page statistics."""
import logging

from ..core.api_client import ApiClient
from ..schemas.common import Page, normalize_page
from ..schemas.leaderboard import (
    LEADERBOARD_CATEGORIES,
    LEADERBOARD_PERIODS,
    CommunityStats,
    LeaderboardEntry,
    LeaderboardStats,
    UserRank,
    normalize_leaderboard,
    normalize_leaderboard_page,
    normalize_leaderboard_stats,
    normalize_user_rank,
)
from ..schemas.post import Post
from ..shared.api_errors import ApiError, ValidationError

logger = logging.getLogger(__name__)


class LeaderboardService:
    """Leaderboard endpoints. Read-only, so always retried."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    async def get_leaderboard(self) -> list[LeaderboardEntry]:
        response = await self.api.request("GET", "/leaderboard", retry=True)
        return self.api.parse(response, normalize_leaderboard)

    async def get_leaderboard_page(self, page: int = 1, limit: int = 50) -> Page[LeaderboardEntry]:
        response = await self.api.request(
            "GET", "/leaderboard", retry=True, params={"page": page, "limit": limit},
        )
        return self.api.parse(response, normalize_leaderboard_page)

    async def get_leaderboard_by_period(self, period: str) -> list[LeaderboardEntry]:
        """
        Ranking over a time window ('daily', 'weekly', 'monthly' or 'all').

        Raises:
            ValidationError: If the period is unknown (no request is sent).
        """
        if period not in LEADERBOARD_PERIODS:
            raise ValidationError(f"Period must be one of: {', '.join(LEADERBOARD_PERIODS)}.")
        response = await self.api.request(
            "GET", "/leaderboard", retry=True, params={"period": period},
        )
        return self.api.parse(response, normalize_leaderboard)

    async def get_top_users_by_category(self, category: str) -> list[LeaderboardEntry]:
        """Ranking by 'posts', 'comments', 'votes' or 'score'."""
        if category not in LEADERBOARD_CATEGORIES:
            raise ValidationError(
                f"Category must be one of: {', '.join(LEADERBOARD_CATEGORIES)}.",
            )
        response = await self.api.request(
            "GET", "/leaderboard", retry=True, params={"category": category},
        )
        return self.api.parse(response, normalize_leaderboard)

    async def get_user_rank(self, user_id: str) -> UserRank:
        response = await self.api.request("GET", f"/leaderboard/user/{user_id}/rank", retry=True)
        return self.api.parse(response, normalize_user_rank)

    async def get_leaderboard_stats(self) -> LeaderboardStats:
        response = await self.api.request("GET", "/leaderboard/stats", retry=True)
        return self.api.parse(response, normalize_leaderboard_stats)

    async def get_community_stats(self) -> CommunityStats:
        """
        Aggregate numbers for the landing page.

        Users and total score come from the leaderboard, the post count from
        the first feed page. A failing source contributes zeros (logged);
        this never raises for API failures.
        """
        stats = CommunityStats()
        try:
            entries = await self.get_leaderboard()
        except ApiError as e:
            logger.warning("community_stats_leaderboard_failed category=%s", e.category)
        else:
            stats.users = len(entries)
            stats.total_score = sum(entry.score for entry in entries)

        try:
            response = await self.api.request("GET", "/posts", retry=True, params={"page": 1})
            page = self.api.parse(response, lambda data: normalize_page(data, Post, "posts"))
        except ApiError as e:
            logger.warning("community_stats_posts_failed category=%s", e.category)
        else:
            stats.posts = page.total
        return stats
