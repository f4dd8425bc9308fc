import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fscrape.models.post import FetchResult
from fscrape.models.session import SourceKind
from fscrape.utils.exceptions import RateLimitError, SourceError
from fscrape.utils.rate_limiter import RateLimiter

logger = structlog.get_logger()


class SourceAdapter(ABC):
    """Abstract base class for forum sources

    Adapters fetch one page at a time and hand back an opaque cursor, so a
    session can stop after any page and continue later from resume data.
    """

    @abstractmethod
    async def fetch_batch(
        self, target: str, cursor: Optional[str] = None, limit: int = 25
    ) -> FetchResult:
        """Fetch the next page of items for a target

        Args:
            target: Source-specific target (subreddit, story list)
            cursor: Cursor returned by the previous page, None to start over
            limit: Maximum items to return

        Returns:
            FetchResult with items and the cursor of the following page
            (None when the listing is exhausted)

        Raises:
            SourceError: If the request fails
            RateLimitError: If the source keeps rejecting requests
        """
        pass

    def validate_target(self, target: str) -> str:
        """Validate and normalise a target

        Raises:
            ValueError: If the target is empty or malformed
        """
        if not target or not target.strip():
            raise ValueError("Target cannot be empty")
        return target.strip()

    @property
    @abstractmethod
    def source_kind(self) -> SourceKind:
        """Source served by this adapter"""
        pass

    async def close(self) -> None:
        """Release network resources"""
        pass


class HttpSourceAdapter(SourceAdapter):
    """SourceAdapter that talks JSON over HTTP with retry and rate limiting"""

    USER_AGENT = "fscrape/0.1"
    TIMEOUT_SECONDS = 30

    def __init__(self, rate_limiter: Optional[RateLimiter] = None):
        self.rate_limiter = rate_limiter or RateLimiter(requests_per_minute=60)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((aiohttp.ClientError, RateLimitError)),
        reraise=True,
    )
    async def _get_json(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        await self.rate_limiter.acquire(self.source_kind.value)

        try:
            async with session.get(
                url,
                params=params,
                headers={"User-Agent": self.USER_AGENT},
                timeout=aiohttp.ClientTimeout(total=self.TIMEOUT_SECONDS),
            ) as response:

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        f"{self.source_kind.value} rate limit exceeded",
                        retry_after=float(retry_after) if retry_after else None,
                    )

                if response.status >= 500:
                    raise aiohttp.ClientError(f"Server error: {response.status}")

                if response.status != 200:
                    text = await response.text()
                    logger.error(
                        "source_api_error",
                        source=self.source_kind.value,
                        status=response.status,
                        body=text[:500],
                    )
                    raise SourceError(f"Request failed: {response.status}")

                return await response.json()

        except asyncio.TimeoutError:
            logger.error("source_api_timeout", source=self.source_kind.value, url=url)
            raise SourceError("Request timed out")

    async def _request(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """_get_json with transport errors surfaced as SourceError"""
        try:
            return await self._get_json(session, url, params)
        except aiohttp.ClientError as e:
            raise SourceError(f"{self.source_kind.value} request failed: {e}") from e
