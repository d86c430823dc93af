"""Service layer for posts: feed reads and optimistic post mutations."""
import logging

from ..core.entity_cache import FEED_LIST, TRENDING_LIST, tag_list, user_list
from ..core.transport import ApiResponse
from ..schemas.common import Page
from ..schemas.post import (
    CreatePostData,
    Post,
    PostFilters,
    TagCount,
    UpdatePostData,
    normalize_tags,
)
from ..schemas.user import Author
from ..shared.api_errors import AuthError
from .base_entity_service import BaseEntityService, temporary_id, utc_now_iso

logger = logging.getLogger(__name__)


class PostService(BaseEntityService[Post]):
    """
    Post endpoints.

    Retry safety:
    - all reads (get_posts, get_post, get_user_posts, get_trending_posts,
      get_posts_by_tag, search_posts, get_popular_tags): retried
    - update_post, delete_post, vote_post: retried (repeating them has no
      further effect)
    - create_post, toggle_like: never retried (a repeat would create a
      duplicate or undo the like)
    """

    model = Post
    entity_key = "post"
    list_key = "posts"

    async def get_posts(self, filters: PostFilters | None = None) -> Page[Post]:
        """
        Fetch a page of posts.

        Unfiltered pages fill the feed view; searches and tag/author filters
        only refresh the entities.
        """
        filters = filters or PostFilters()
        is_feed = not (filters.search or filters.tags or filters.author_id)
        return await self._fetch_page(
            "/posts", filters.to_params(), FEED_LIST if is_feed else None,
        )

    async def get_post(self, post_id: str) -> Post:
        return await self._fetch_one(f"/posts/{post_id}", post_id)

    async def get_user_posts(self, user_id: str, page: int = 1) -> Page[Post]:
        return await self._fetch_page(
            f"/posts/user/{user_id}", {"page": page}, user_list(user_id),
        )

    async def get_trending_posts(self, limit: int = 10) -> list[Post]:
        page = await self._fetch_page(
            "/posts", {"trending": "true", "limit": limit}, TRENDING_LIST,
        )
        return page.items

    async def get_posts_by_tag(self, tag: str, page: int = 1) -> Page[Post]:
        return await self._fetch_page("/posts", {"tag": tag, "page": page}, tag_list(tag))

    async def search_posts(self, query: str, page: int = 1) -> Page[Post]:
        return await self.get_posts(PostFilters(search=query, page=page))

    async def get_popular_tags(self, limit: int = 20) -> list[TagCount]:
        response = await self.api.request(
            "GET", "/posts/tags", retry=True, params={"limit": limit},
        )
        return self.api.parse(response, normalize_tags)

    async def create_post(self, data: CreatePostData) -> Post:
        """
        Create a post, showing it at the top of the feed immediately.

        The draft carries a temporary id until the server answers; on
        failure it is removed again and the error propagates.
        """
        self.api.require_user_id()
        user = self.api.session.get_user()
        if user is None:
            raise AuthError()
        draft = Post(
            id=temporary_id(),
            title=data.title,
            content=data.content,
            tags=data.tags,
            author=Author.from_identity(user),
            created_at=utc_now_iso(),
        )
        files = {"image": data.image} if data.image is not None else None

        async def send() -> ApiResponse:
            return await self.api.request(
                "POST", "/posts", retry=False, auth=True, form=data.to_form(), files=files,
            )

        post = await self._create(draft, [FEED_LIST, user_list(user.id)], send)
        logger.info("post_created post_id=%s", post.id)
        return post

    async def update_post(self, post_id: str, data: UpdatePostData) -> Post | None:
        """Edit a post. The image, if any, is only known once the server answers."""
        files = {"image": data.image} if data.image is not None else None

        async def send() -> ApiResponse:
            return await self.api.request(
                "PUT", f"/posts/{post_id}", retry=True, auth=True,
                form=data.to_form(), files=files,
            )

        return await self._update(post_id, data.changed_fields(), send)

    async def delete_post(self, post_id: str) -> None:
        """Delete a post, removing it from every view until the server confirms."""
        await self._delete(post_id, f"/posts/{post_id}")

    async def toggle_like(self, post_id: str) -> Post | None:
        """
        Like or unlike a post.

        Not retried: the endpoint toggles, so a repeat after a lost response
        would undo the first request.
        """
        user_id = self.api.require_user_id()
        handle = self.cache.apply_like(post_id, user_id) if post_id in self.cache else None

        async def send() -> ApiResponse:
            return await self.api.request("POST", f"/posts/{post_id}/like", retry=False, auth=True)

        result = await self._mutate(handle, send, post_id)
        return self._current(post_id, result)

    async def vote_post(self, post_id: str, vote: str) -> Post | None:
        """Set the caller's vote on a post ('up' or 'down')."""
        return await self._vote(post_id, vote, f"/posts/{post_id}/vote", "type")
