"""Service layer for comments."""
import logging

from ..core.entity_cache import RECENT_LIST, replies_list, thread_list, user_list
from ..core.transport import ApiResponse
from ..schemas.comment import Comment, CommentFilters, CreateCommentData, CreateReplyData
from ..schemas.common import Page
from ..schemas.user import Author
from ..shared.api_errors import AuthError, ValidationError
from .base_entity_service import BaseEntityService, temporary_id, utc_now_iso

logger = logging.getLogger(__name__)


class CommentService(BaseEntityService[Comment]):
    """
    Comment endpoints.

    Reads, update_comment, delete_comment and vote_comment are retried;
    create_comment and create_comment_reply are not (a repeat would post the
    comment twice).
    """

    model = Comment
    entity_key = "comment"
    list_key = "comments"

    async def get_comments_by_post(
        self, post_id: str, filters: CommentFilters | None = None,
    ) -> Page[Comment]:
        filters = filters or CommentFilters()
        return await self._fetch_page(
            f"/comments/post/{post_id}", filters.to_params(), thread_list(post_id),
        )

    async def get_user_comments(self, user_id: str, page: int = 1) -> Page[Comment]:
        return await self._fetch_page(
            f"/comments/user/{user_id}", {"page": page}, user_list(user_id),
        )

    async def get_comment(self, comment_id: str) -> Comment:
        return await self._fetch_one(f"/comments/{comment_id}", comment_id)

    async def get_recent_comments(self, limit: int = 10) -> list[Comment]:
        """Latest comments across all posts, kept in the "recent" view."""
        page = await self._fetch_page(
            "/comments", {"recent": "true", "limit": limit}, RECENT_LIST,
        )
        return page.items

    async def get_comment_replies(self, comment_id: str, page: int = 1) -> Page[Comment]:
        return await self._fetch_page(
            f"/comments/{comment_id}/replies", {"page": page}, replies_list(comment_id),
        )

    def _author(self) -> Author:
        self.api.require_user_id()
        user = self.api.session.get_user()
        if user is None:
            raise AuthError()
        return Author.from_identity(user)

    async def create_comment(self, post_id: str, content: str) -> Comment:
        """Add a comment, showing it at the top of the thread immediately."""
        author = self._author()
        if not content.strip():
            raise ValidationError("Comment content is required.")
        data = CreateCommentData(content=content, post_id=post_id)
        draft = Comment(
            id=temporary_id(),
            content=content,
            post_id=post_id,
            author=author,
            created_at=utc_now_iso(),
        )

        async def send() -> ApiResponse:
            return await self.api.request(
                "POST", "/comments", retry=False, auth=True, json=data.to_json(),
            )

        comment = await self._create(draft, [thread_list(post_id)], send)
        logger.info("comment_created comment_id=%s post_id=%s", comment.id, post_id)
        return comment

    async def create_comment_reply(self, parent_id: str, content: str) -> Comment:
        """
        Reply to a comment, showing the reply at the top of its replies view
        immediately.

        The draft inherits the parent's post when the parent is cached.
        """
        author = self._author()
        if not content.strip():
            raise ValidationError("Reply content is required.")
        data = CreateReplyData(content=content)
        parent = self.cache.get(parent_id)
        draft = Comment(
            id=temporary_id(),
            content=content,
            post_id=parent.post_id if parent is not None else None,
            parent_id=parent_id,
            author=author,
            created_at=utc_now_iso(),
        )

        async def send() -> ApiResponse:
            return await self.api.request(
                "POST", f"/comments/{parent_id}/replies", retry=False, auth=True,
                json=data.to_json(),
            )

        reply = await self._create(draft, [replies_list(parent_id)], send)
        logger.info("comment_reply_created comment_id=%s parent_id=%s", reply.id, parent_id)
        return reply

    async def update_comment(self, comment_id: str, content: str) -> Comment | None:
        if not content.strip():
            raise ValidationError("Comment content is required.")

        async def send() -> ApiResponse:
            return await self.api.request(
                "PUT", f"/comments/{comment_id}", retry=True, auth=True,
                json={"content": content},
            )

        return await self._update(comment_id, {"content": content}, send)

    async def delete_comment(self, comment_id: str) -> None:
        await self._delete(comment_id, f"/comments/{comment_id}")

    async def vote_comment(self, comment_id: str, vote: str) -> Comment | None:
        """Set the caller's vote on a comment ('up' or 'down')."""
        return await self._vote(comment_id, vote, f"/comments/{comment_id}/vote", "voteType")
