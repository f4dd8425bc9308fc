from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from fscrape.models.post import FetchResult, ForumPost
from fscrape.models.session import SourceKind
from fscrape.services.providers.base import HttpSourceAdapter
from fscrape.utils.exceptions import SourceError
from fscrape.utils.rate_limiter import RateLimiter

logger = structlog.get_logger()


class RedditAdapter(HttpSourceAdapter):
    """Fetch posts from Reddit's public JSON listings

    Targets are `<subreddit>` or `<subreddit>/<sort>` (hot, new, top, rising).
    The cursor is Reddit's own `after` fullname.
    """

    BASE_URL = "https://www.reddit.com"
    SORTS = {"hot", "new", "top", "rising"}
    MAX_LIMIT = 100

    def __init__(
        self,
        base_url: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        # Unauthenticated clients get roughly one request per second
        super().__init__(rate_limiter or RateLimiter(requests_per_minute=60, burst_size=5))
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    @property
    def source_kind(self) -> SourceKind:
        return SourceKind.REDDIT

    def validate_target(self, target: str) -> str:
        target = super().validate_target(target)
        if target.lower().startswith("r/"):
            target = target[2:]

        subreddit, _, sort = target.partition("/")
        sort = sort or "hot"
        if not subreddit.replace("_", "").isalnum():
            raise ValueError(f"Invalid subreddit name: {subreddit!r}")
        if sort not in self.SORTS:
            raise ValueError(f"Unknown sort '{sort}' (expected one of {sorted(self.SORTS)})")
        return f"{subreddit}/{sort}"

    async def fetch_batch(
        self, target: str, cursor: Optional[str] = None, limit: int = 25
    ) -> FetchResult:
        listing = self.validate_target(target)
        params: Dict[str, Any] = {"limit": min(limit, self.MAX_LIMIT), "raw_json": 1}
        if cursor:
            params["after"] = cursor

        async with aiohttp.ClientSession() as session:
            data = await self._request(
                session, f"{self.base_url}/r/{listing}.json", params
            )

        if not isinstance(data, dict) or "data" not in data:
            raise SourceError(f"Unexpected listing payload for '{listing}'")

        listing_data = data["data"]
        posts = self._parse_children(listing_data.get("children") or [])
        next_cursor = listing_data.get("after")

        logger.info(
            "reddit_batch_fetched",
            target=listing,
            count=len(posts),
            next_cursor=next_cursor,
        )
        return FetchResult(items=posts, next_cursor=next_cursor, request_count=1)

    def _parse_children(self, children: List[Dict[str, Any]]) -> List[ForumPost]:
        posts = []
        for child in children:
            item = child.get("data") or {}
            try:
                posts.append(self._parse_post(item))
            except (KeyError, ValueError) as e:
                logger.warning(
                    "reddit_item_parse_failed", item_id=item.get("id"), error=str(e)
                )
        return posts

    def _parse_post(self, item: Dict[str, Any]) -> ForumPost:
        created_at = None
        if item.get("created_utc"):
            created_at = datetime.utcfromtimestamp(float(item["created_utc"]))

        url = item.get("url")
        if item.get("is_self") and item.get("permalink"):
            url = f"https://reddit.com{item['permalink']}"

        return ForumPost(
            id=item["id"],
            source_kind=SourceKind.REDDIT,
            title=item.get("title") or "",
            author=item.get("author"),
            url=url,
            content=item.get("selftext") or None,
            score=item.get("score") or 0,
            comment_count=item.get("num_comments") or 0,
            category=item.get("subreddit"),
            created_at=created_at,
        )
