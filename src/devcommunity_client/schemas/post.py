"""Schemas for posts."""
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .common import (
    FileUpload,
    VoteType,
    WireModel,
    coerce_count,
    coerce_id,
    coerce_id_list,
    coerce_tags,
    unwrap_envelope,
)
from .user import Author, coerce_author

PostSort = Literal["newest", "oldest", "mostVoted", "mostCommented"]


class Post(WireModel):
    """Canonical post entity held by the entity cache."""

    id: str = Field(validation_alias=AliasChoices("id", "_id"), serialization_alias="id")
    title: str = ""
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    author: Author | None = None
    image: str | None = Field(
        default=None, validation_alias=AliasChoices("image", "imageUrl", "image_url"),
    )
    votes: int = 0
    upvotes: int = 0
    downvotes: int = 0
    voted_by: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("votedBy", "voted_by", "voters"),
        serialization_alias="votedBy",
    )
    liked_by: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("likedBy", "liked_by", "likes"),
        serialization_alias="likedBy",
    )
    user_vote: VoteType | None = Field(
        default=None,
        validation_alias=AliasChoices("userVote", "user_vote"),
        serialization_alias="userVote",
    )
    comments_count: int = Field(
        default=0,
        validation_alias=AliasChoices("commentsCount", "comments_count", "commentCount"),
        serialization_alias="commentsCount",
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

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return coerce_id(value)

    @field_validator("author", mode="before")
    @classmethod
    def _coerce_author(cls, value: Any) -> Any:
        return coerce_author(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> Any:
        return coerce_tags(value)

    @field_validator("voted_by", "liked_by", mode="before")
    @classmethod
    def _coerce_id_lists(cls, value: Any) -> list[str]:
        return coerce_id_list(value)

    @field_validator("votes", "upvotes", "downvotes", "comments_count", mode="before")
    @classmethod
    def _coerce_counts(cls, value: Any) -> Any:
        return coerce_count(value)

    @model_validator(mode="after")
    def _derive_votes(self) -> "Post":
        # Older payloads only carry upvotes/downvotes
        if "votes" not in self.model_fields_set and (
            "upvotes" in self.model_fields_set or "downvotes" in self.model_fields_set
        ):
            self.votes = self.upvotes - self.downvotes
        return self


class PostFilters(BaseModel):
    """Query parameters for GET /posts."""

    page: int | None = Field(default=None, ge=1)
    search: str | None = None
    tags: list[str] | None = None
    author_id: str | None = None
    sort_by: PostSort | None = None

    def to_params(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "search": self.search,
            "tags": self.tags,
            "authorId": self.author_id,
            "sortBy": self.sort_by,
        }


class CreatePostData(BaseModel):
    """Fields for POST /posts (multipart; tags JSON-encoded)."""

    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    image: FileUpload | None = None

    def to_form(self) -> dict[str, Any]:
        return {"title": self.title, "content": self.content, "tags": self.tags}


class UpdatePostData(BaseModel):
    """Partial fields for PUT /posts/:id (multipart)."""

    title: str | None = None
    content: str | None = None
    tags: list[str] | None = None
    image: FileUpload | None = None

    def to_form(self) -> dict[str, Any]:
        form: dict[str, Any] = {}
        if self.title is not None:
            form["title"] = self.title
        if self.content is not None:
            form["content"] = self.content
        if self.tags is not None:
            form["tags"] = self.tags
        return form

    def changed_fields(self) -> dict[str, Any]:
        """Entity fields this update sets (the image is only known after upload)."""
        return self.to_form()


class TagCount(WireModel):
    """A tag and how many posts carry it."""

    tag: str = Field(min_length=1, validation_alias=AliasChoices("tag", "name", "_id"))
    count: int = 0

    @field_validator("count", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> Any:
        return coerce_count(value)


def normalize_tags(payload: Any) -> list[TagCount]:
    """
    Parse the popular-tags listing.

    Accepts a bare list, `{tags: [...]}`, or either inside the response
    wrapper. Entries given as plain strings count as zero posts.
    """
    body = unwrap_envelope(payload)
    if isinstance(body, dict):
        body = body.get("tags", [])
    if not isinstance(body, list):
        raise TypeError(f"Expected a list of tags, got {type(body).__name__}")
    return [
        TagCount(tag=item) if isinstance(item, str) else TagCount.model_validate(item)
        for item in body
    ]
