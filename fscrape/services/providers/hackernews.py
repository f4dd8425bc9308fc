import asyncio
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


class HackerNewsAdapter(HttpSourceAdapter):
    """Fetch stories from the Hacker News Firebase API

    Targets are story lists (top, new, best, ask, show, job). The cursor is
    the offset into the list, so a resumed session skips what it already saw.
    """

    BASE_URL = "https://hacker-news.firebaseio.com/v0"
    ITEM_URL = "https://news.ycombinator.com/item?id={id}"
    STORY_LISTS = {"top", "new", "best", "ask", "show", "job"}

    def __init__(
        self,
        base_url: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        super().__init__(rate_limiter or RateLimiter(requests_per_minute=600, burst_size=50))
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    @property
    def source_kind(self) -> SourceKind:
        return SourceKind.HACKERNEWS

    def validate_target(self, target: str) -> str:
        target = super().validate_target(target).lower()
        if target.endswith("stories"):
            target = target[: -len("stories")]
        if target not in self.STORY_LISTS:
            raise ValueError(
                f"Unknown Hacker News list '{target}' "
                f"(expected one of {sorted(self.STORY_LISTS)})"
            )
        return target

    async def fetch_batch(
        self, target: str, cursor: Optional[str] = None, limit: int = 25
    ) -> FetchResult:
        story_list = self.validate_target(target)
        offset = self._parse_cursor(cursor)

        async with aiohttp.ClientSession() as session:
            ids = await self._request(
                session, f"{self.base_url}/{story_list}stories.json"
            )
            if not isinstance(ids, list):
                raise SourceError(f"Unexpected story list payload for '{story_list}'")

            page_ids = ids[offset : offset + limit]
            items = await asyncio.gather(
                *(
                    self._request(session, f"{self.base_url}/item/{item_id}.json")
                    for item_id in page_ids
                )
            )

        posts = self._parse_items(items, story_list)
        next_offset = offset + len(page_ids)
        next_cursor = str(next_offset) if page_ids and next_offset < len(ids) else None

        logger.info(
            "hackernews_batch_fetched",
            target=story_list,
            offset=offset,
            count=len(posts),
            next_cursor=next_cursor,
        )
        return FetchResult(
            items=posts,
            next_cursor=next_cursor,
            request_count=1 + len(page_ids),
        )

    @staticmethod
    def _parse_cursor(cursor: Optional[str]) -> int:
        if cursor is None:
            return 0
        try:
            offset = int(cursor)
        except ValueError:
            raise SourceError(f"Invalid Hacker News cursor: {cursor!r}")
        if offset < 0:
            raise SourceError(f"Invalid Hacker News cursor: {cursor!r}")
        return offset

    def _parse_items(self, items: List[Any], story_list: str) -> List[ForumPost]:
        posts = []
        for item in items:
            # Deleted or dead items come back as null or flagged
            if not isinstance(item, dict) or item.get("deleted") or item.get("dead"):
                continue
            try:
                posts.append(self._parse_item(item, story_list))
            except (KeyError, ValueError) as e:
                logger.warning(
                    "hackernews_item_parse_failed", item_id=item.get("id"), error=str(e)
                )
        return posts

    def _parse_item(self, item: Dict[str, Any], story_list: str) -> ForumPost:
        created_at = None
        if item.get("time"):
            created_at = datetime.utcfromtimestamp(item["time"])

        return ForumPost(
            id=str(item["id"]),
            source_kind=SourceKind.HACKERNEWS,
            title=item.get("title") or "",
            author=item.get("by"),
            url=item.get("url") or self.ITEM_URL.format(id=item["id"]),
            content=item.get("text"),
            score=item.get("score") or 0,
            comment_count=item.get("descendants") or 0,
            category=story_list,
            created_at=created_at,
        )
