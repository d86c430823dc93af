"""Shared wire-format helpers: base model, envelopes, pagination, uploads."""
import json
import math
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict

VoteType = Literal["up", "down"]

ModelT = TypeVar("ModelT", bound=BaseModel)

# Keys that may appear next to "data" in the backend's response wrapper
ENVELOPE_KEYS = {"success", "data", "message", "status", "statusCode"}


class WireModel(BaseModel):
    """
    Base for canonical entities parsed from backend payloads.

    Fields accept every spelling the backend has used (via validation aliases)
    and unknown keys are ignored, so callers never branch on raw JSON shape.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Canonical camelCase JSON representation."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class FileUpload:
    """A file part for multipart requests (avatar, post image)."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    def to_httpx(self) -> tuple[str, bytes, str]:
        return (self.filename, self.content, self.content_type)


def coerce_id(value: Any) -> Any:
    """Accept numeric ids and embedded objects ({"_id": ...}) as string ids."""
    if isinstance(value, dict):
        value = value.get("id", value.get("_id"))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


def coerce_id_list(value: Any) -> list[str]:
    """Normalize voter/liker lists that may hold ids or embedded user objects."""
    if not isinstance(value, list):
        return []
    ids = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("user", item.get("id", item.get("_id")))
            if isinstance(item, dict):
                item = item.get("id", item.get("_id"))
        if item is None:
            continue
        ids.append(str(item))
    return ids


def coerce_tags(value: Any) -> Any:
    """Tags may arrive as a list, a JSON-encoded list, or a comma-separated string."""
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return decoded if isinstance(decoded, list) else [str(decoded)]
    if value is None:
        return []
    return value


def coerce_count(value: Any) -> Any:
    """Counters may be null or given as a list of voter ids."""
    if value is None:
        return 0
    if isinstance(value, list):
        return len(value)
    return value


def unwrap_envelope(payload: Any) -> Any:
    """
    Strip the `{success, data, message}` response wrapper when present.

    A paginated body such as `{data: [...], total: 3}` is not a wrapper and is
    returned as-is.
    """
    if (
        isinstance(payload, dict)
        and "data" in payload
        and ("success" in payload or set(payload) <= ENVELOPE_KEYS)
    ):
        return payload["data"]
    return payload


class Page(BaseModel, Generic[ModelT]):
    """One page of a paginated listing."""

    items: list[ModelT]
    total: int
    page: int = 1
    limit: int = 0
    total_pages: int = 1
    has_more: bool = False


def _first_int(source: dict[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = source.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def normalize_page(payload: Any, model: type[ModelT], key: str) -> Page[ModelT]:
    """
    Parse any of the backend's list shapes into a Page.

    Accepted shapes (optionally inside the response wrapper):
    - bare list: `[...]`
    - `{data: [...], total, page, limit, totalPages}`
    - `{<key>: [...], total, ...}` (e.g. `posts`, `comments`)
    - `{<key>: [...], pagination: {total, page, limit, pages}}`
    """
    body = unwrap_envelope(payload)
    meta: dict[str, Any] = {}

    if isinstance(body, list):
        raw_items = body
    elif isinstance(body, dict):
        raw_items = None
        for candidate in (key, "data", "items", "results"):
            if isinstance(body.get(candidate), list):
                raw_items = body[candidate]
                break
        if raw_items is None and isinstance(body.get("data"), dict):
            return normalize_page(body["data"], model, key)
        raw_items = raw_items or []
        meta = body.get("pagination") if isinstance(body.get("pagination"), dict) else body
    else:
        raw_items = []

    items = [model.model_validate(item) for item in raw_items]
    total = _first_int(meta, "total", "totalCount", "count")
    total = len(items) if total is None else total
    page = _first_int(meta, "page", "currentPage") or 1
    limit = _first_int(meta, "limit", "pageSize", "perPage") or len(items)
    total_pages = _first_int(meta, "totalPages", "pages")
    if total_pages is None:
        total_pages = math.ceil(total / limit) if limit else 1
    has_more = meta.get("hasMore")
    if not isinstance(has_more, bool):
        has_more = page < total_pages

    return Page[model](
        items=items,
        total=total,
        page=page,
        limit=limit,
        total_pages=total_pages,
        has_more=has_more,
    )


def normalize_entity(
    payload: Any,
    model: type[ModelT],
    key: str,
    default_id: str | None = None,
) -> ModelT:
    """
    Parse a single-entity response.

    Accepts the entity itself, `{<key>: {...}}` (e.g. `{"post": {...}}`), or
    either inside the response wrapper. Mutation endpoints sometimes answer
    with only the changed fields (`{"upvotes": 3, "downvotes": 1}`); passing
    `default_id` lets such partial bodies parse, with only the fields present
    marked as set.

    Raises:
        pydantic.ValidationError: If the body is not a valid entity.
        TypeError: If the body is not an object.
    """
    body = unwrap_envelope(payload)
    if isinstance(body, dict) and isinstance(body.get(key), dict):
        body = body[key]
    if body is None and default_id is not None:
        body = {}
    if not isinstance(body, dict):
        raise TypeError(f"Expected a {model.__name__} object, got {type(body).__name__}")
    if default_id is not None and "id" not in body and "_id" not in body:
        body = {"id": default_id, **body}
    return model.model_validate(body)
