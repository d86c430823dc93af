"""Endpoint services: typed call sites over the request pipeline."""
from .auth_service import AuthService
from .comment_service import CommentService
from .leaderboard_service import LeaderboardService
from .post_service import PostService
from .user_service import UserService

__all__ = [
    "AuthService",
    "CommentService",
    "LeaderboardService",
    "PostService",
    "UserService",
]
