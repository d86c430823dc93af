"""Schemas for comments."""
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .common import VoteType, WireModel, coerce_count, coerce_id, coerce_id_list
from .user import Author, coerce_author

CommentSort = Literal["newest", "oldest", "mostVoted"]


class Comment(WireModel):
    """Canonical comment entity held by the entity cache."""

    id: str = Field(validation_alias=AliasChoices("id", "_id"), serialization_alias="id")
    content: str = ""
    post_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("postId", "post_id", "post"),
        serialization_alias="postId",
    )
    parent_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("parentId", "parent_id", "parentComment", "parent"),
        serialization_alias="parentId",
    )
    author: Author | None = None
    votes: int = 0
    upvotes: int = 0
    downvotes: int = 0
    voted_by: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("votedBy", "voted_by", "voters"),
        serialization_alias="votedBy",
    )
    user_vote: VoteType | None = Field(
        default=None,
        validation_alias=AliasChoices("userVote", "user_vote"),
        serialization_alias="userVote",
    )
    created_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
    )
    updated_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("updatedAt", "updated_at"),
        serialization_alias="updatedAt",
    )

    @field_validator("id", "post_id", "parent_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        return coerce_id(value)

    @field_validator("author", mode="before")
    @classmethod
    def _coerce_author(cls, value: Any) -> Any:
        return coerce_author(value)

    @field_validator("voted_by", mode="before")
    @classmethod
    def _coerce_voters(cls, value: Any) -> list[str]:
        return coerce_id_list(value)

    @field_validator("votes", "upvotes", "downvotes", mode="before")
    @classmethod
    def _coerce_counts(cls, value: Any) -> Any:
        return coerce_count(value)

    @model_validator(mode="after")
    def _derive_votes(self) -> "Comment":
        if "votes" not in self.model_fields_set and (
            "upvotes" in self.model_fields_set or "downvotes" in self.model_fields_set
        ):
            self.votes = self.upvotes - self.downvotes
        return self


class CommentFilters(BaseModel):
    """Query parameters for GET /comments/post/:postId."""

    page: int | None = Field(default=None, ge=1)
    sort_by: CommentSort | None = None

    def to_params(self) -> dict[str, Any]:
        return {"page": self.page, "sortBy": self.sort_by}


class CreateCommentData(BaseModel):
    """Body for POST /comments."""

    content: str = Field(min_length=1)
    post_id: str = Field(min_length=1)

    def to_json(self) -> dict[str, str]:
        return {"content": self.content, "postId": self.post_id}


class CreateReplyData(BaseModel):
    """Body for POST /comments/:id/replies."""

    content: str = Field(min_length=1)

    def to_json(self) -> dict[str, str]:
        return {"content": self.content}
