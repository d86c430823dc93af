"""Command-line entry point: `python -m devcommunity_client <command>`."""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .client import DevCommunityClient
from .schemas.post import PostFilters
from .shared.api_errors import ApiError

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devcommunity",
        description="Query a DevCommunity backend (configured via API_BASE_URL).",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("leaderboard", help="Print the ranked users")
    feed = commands.add_parser("feed", help="Print a page of the post feed")
    feed.add_argument("--page", type=int, default=1)
    feed.add_argument("--search", default=None)
    feed.add_argument("--tag", action="append", dest="tags", default=None)
    commands.add_parser("whoami", help="Print the signed-in user (requires SESSION_FILE)")
    return parser


async def _run(args: argparse.Namespace) -> Any:
    async with DevCommunityClient() as client:
        if args.command == "leaderboard":
            entries = await client.leaderboard.get_leaderboard()
            return [entry.model_dump(mode="json", by_alias=True) for entry in entries]
        if args.command == "feed":
            page = await client.posts.get_posts(
                PostFilters(page=args.page, search=args.search, tags=args.tags),
            )
            return page.model_dump(mode="json", by_alias=True)
        if client.session.get_token() is None:
            return None
        user = await client.auth.get_profile()
        return user.to_wire() if user is not None else None


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = _build_parser().parse_args(argv)
    try:
        result = asyncio.run(_run(args))
    except ApiError as e:
        logger.error("command_failed command=%s category=%s", args.command, e.category)
        print(e.message, file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0 if result is not None else 1


if __name__ == "__main__":
    sys.exit(main())
