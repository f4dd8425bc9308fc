from unittest.mock import AsyncMock, patch

import pytest

from fscrape.models.session import SourceKind
from fscrape.services.providers.reddit import RedditAdapter
from fscrape.utils.exceptions import SourceError
from fscrape.utils.rate_limiter import RateLimiter


@pytest.fixture
def adapter():
    return RedditAdapter(
        base_url="https://reddit.test",
        rate_limiter=RateLimiter(requests_per_minute=6000, burst_size=1000),
    )


def listing(children, after=None):
    return {"kind": "Listing", "data": {"children": children, "after": after}}


def child(post_id, **extra):
    data = {
        "id": post_id,
        "title": f"Post {post_id}",
        "author": "spez",
        "subreddit": "python",
        "url": f"https://example.com/{post_id}",
        "score": 42,
        "num_comments": 7,
        "created_utc": 1700000000.0,
    }
    data.update(extra)
    return {"kind": "t3", "data": data}


@pytest.mark.parametrize(
    "target,expected",
    [
        ("python", "python/hot"),
        ("r/python", "python/hot"),
        ("python/new", "python/new"),
        ("learn_python/top", "learn_python/top"),
    ],
)
def test_validate_target(adapter, target, expected):
    assert adapter.validate_target(target) == expected


@pytest.mark.parametrize("target", ["", "py thon", "python/controversial"])
def test_validate_target_rejects(adapter, target):
    with pytest.raises(ValueError):
        adapter.validate_target(target)


@pytest.mark.asyncio
async def test_fetch_batch_parses_listing(adapter):
    payload = listing(
        [
            child("a1"),
            child(
                "a2",
                is_self=True,
                permalink="/r/python/comments/a2/x/",
                selftext="body",
            ),
        ],
        after="t3_a2",
    )
    request = AsyncMock(return_value=payload)

    with patch.object(adapter, "_request", request):
        result = await adapter.fetch_batch("python", limit=2)

    assert adapter.source_kind == SourceKind.REDDIT
    assert [p.id for p in result.items] == ["a1", "a2"]
    assert result.next_cursor == "t3_a2"
    assert result.items[0].comment_count == 7
    assert result.items[0].category == "python"
    assert result.items[1].url == "https://reddit.com/r/python/comments/a2/x/"
    assert result.items[1].content == "body"

    url, params = request.call_args.args[1], request.call_args.args[2]
    assert url == "https://reddit.test/r/python/hot.json"
    assert params == {"limit": 2, "raw_json": 1}


@pytest.mark.asyncio
async def test_cursor_and_limit_cap(adapter):
    request = AsyncMock(return_value=listing([]))

    with patch.object(adapter, "_request", request):
        result = await adapter.fetch_batch("python/new", cursor="t3_x", limit=500)

    params = request.call_args.args[2]
    assert params["after"] == "t3_x"
    assert params["limit"] == 100
    assert result.items == []
    assert result.next_cursor is None


@pytest.mark.asyncio
async def test_malformed_child_skipped(adapter):
    request = AsyncMock(return_value=listing([{"kind": "t3", "data": {}}, child("ok")]))

    with patch.object(adapter, "_request", request):
        result = await adapter.fetch_batch("python")

    assert [p.id for p in result.items] == ["ok"]


@pytest.mark.asyncio
async def test_unexpected_payload(adapter):
    with patch.object(adapter, "_request", AsyncMock(return_value=["nope"])):
        with pytest.raises(SourceError):
            await adapter.fetch_batch("python")


@pytest.mark.asyncio
async def test_http_request(adapter):
    with patch("aiohttp.ClientSession.get") as mock_get:
        mock_resp = AsyncMock()
        mock_resp.status = 200
        mock_resp.json.return_value = listing([child("z9")])
        mock_get.return_value.__aenter__.return_value = mock_resp

        result = await adapter.fetch_batch("python")

    assert [p.id for p in result.items] == ["z9"]
    headers = mock_get.call_args.kwargs["headers"]
    assert headers["User-Agent"] == RedditAdapter.USER_AGENT
