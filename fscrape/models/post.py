"""Normalised forum content returned by source adapters."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from fscrape.models.session import SourceKind


class ForumPost(BaseModel):
    """Forum post, normalised across sources"""

    id: str = Field(..., min_length=1)
    source_kind: SourceKind
    title: str = ""
    author: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    score: int = 0
    comment_count: int = 0
    category: Optional[str] = None
    created_at: Optional[datetime] = None
    scraped_at: datetime = Field(default_factory=datetime.utcnow)


class FetchResult(BaseModel):
    """One page of items from a source adapter"""

    items: List[ForumPost] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    request_count: int = 1
    rate_limited: bool = False
