"""Runs one scrape target inside a managed session.

Pages are pulled from a source adapter until the item cap is reached, the
listing runs out or the session's cancellation token fires. After every page
the posts are upserted and the adapter cursor is stored as resume data, so
a resumed session continues from the next page.
"""

from typing import Optional

import structlog

from fscrape.models.session import Session, SessionConfig, SessionStatus
from fscrape.services.providers.base import SourceAdapter
from fscrape.services.store_base import SessionStore
from fscrape.session.manager import SessionManager

logger = structlog.get_logger()

START_TOKEN = "start"


class ScrapeJob:
    """Drives a SessionManager session with pages from one adapter"""

    def __init__(
        self,
        manager: SessionManager,
        adapter: SourceAdapter,
        store: SessionStore,
        page_size: int = 25,
    ):
        self.manager = manager
        self.adapter = adapter
        self.store = store
        self.page_size = page_size

    async def run(
        self,
        target: Optional[str] = None,
        max_items: Optional[int] = None,
        resume_from: Optional[str] = None,
        include_comments: bool = False,
    ) -> Session:
        """Scrape a target to completion (or until paused/cancelled).

        Args:
            target: Source target, e.g. "programming" or "top"
            max_items: Item cap for a new session
            resume_from: Continue this session instead of creating one
            include_comments: Recorded in the session config

        Returns:
            The session after the run; failed runs come back as a
            resumable failed session rather than raising
        """
        if resume_from:
            session = self.manager.create(
                SessionConfig(
                    source_kind=self.adapter.source_kind,
                    resume_from_session=resume_from,
                )
            )
        else:
            if not target:
                raise ValueError("A target is required to start a scrape")
            session = self.manager.create(
                SessionConfig(
                    source_kind=self.adapter.source_kind,
                    query_type="target",
                    query_value=self.adapter.validate_target(target),
                    max_items=max_items,
                    include_comments=include_comments,
                )
            )
            session = self.manager.start(session.id)

        return await self._scrape(session)

    async def _scrape(self, session: Session) -> Session:
        session_id = session.id
        token = self.manager.get_cancellation_token(session_id)
        target = session.config.query_value or ""
        limit = session.config.max_items
        processed = session.progress.processed_items
        cursor = session.resume_data.next_cursor if session.resume_data else None

        logger.info(
            "scrape_started",
            session_id=session_id,
            source=self.adapter.source_kind.value,
            target=target,
            cursor=cursor,
            processed=processed,
        )

        try:
            while not token.cancelled:
                page_limit = self.page_size
                if limit is not None:
                    page_limit = min(page_limit, limit - processed)
                if page_limit <= 0:
                    break

                result = await self.adapter.fetch_batch(target, cursor, page_limit)
                if token.cancelled:
                    break

                items = result.items[:page_limit]
                processed += self.store.upsert_posts(items)

                current = self.manager.get_session(session_id)
                self.manager.update_metrics(
                    session_id,
                    request_count=current.metrics.request_count + result.request_count,
                    rate_limit_hits=current.metrics.rate_limit_hits
                    + (1 if result.rate_limited else 0),
                )
                self.manager.update_resume_data(
                    session_id,
                    next_cursor=result.next_cursor,
                    last_successful_item=items[-1].id if items else None,
                    checkpoint={"target": target, "cursor": result.next_cursor},
                )
                self.manager.update_progress(
                    session_id,
                    processed,
                    limit,
                    last_item_id=items[-1].id if items else None,
                )

                cursor = result.next_cursor
                if cursor is None or not items:
                    break

        except Exception as e:
            logger.error(
                "scrape_failed",
                session_id=session_id,
                target=target,
                cursor=cursor,
                error=str(e),
                exc_info=True,
            )
            current = self.manager.get_session(session_id)
            if current is not None and current.status == SessionStatus.RUNNING:
                return self.manager.fail(
                    session_id, e, resume_token=cursor or START_TOKEN
                )
            raise

        if token.cancelled:
            logger.info("scrape_interrupted", session_id=session_id, reason=token.reason)
            return self.manager.get_session(session_id)

        logger.info("scrape_completed", session_id=session_id, items=processed)
        return self.manager.complete(session_id)
