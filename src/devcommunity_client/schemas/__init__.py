"""Pydantic schemas for the DevCommunity wire contract."""
from .comment import Comment, CommentFilters, CreateCommentData, CreateReplyData
from .common import FileUpload, Page, VoteType
from .leaderboard import (
    CommunityStats,
    LeaderboardCategory,
    LeaderboardEntry,
    LeaderboardPeriod,
    LeaderboardStats,
    UserRank,
)
from .post import CreatePostData, Post, PostFilters, TagCount, UpdatePostData
from .user import AuthResult, Author, ProfileUpdate, RegisterData, UserIdentity, UserStats

__all__ = [
    "AuthResult",
    "Author",
    "Comment",
    "CommentFilters",
    "CommunityStats",
    "CreateCommentData",
    "CreatePostData",
    "CreateReplyData",
    "FileUpload",
    "LeaderboardCategory",
    "LeaderboardEntry",
    "LeaderboardPeriod",
    "LeaderboardStats",
    "Page",
    "Post",
    "PostFilters",
    "ProfileUpdate",
    "RegisterData",
    "TagCount",
    "UpdatePostData",
    "UserIdentity",
    "UserRank",
    "UserStats",
    "VoteType",
]
