"""Bounded-concurrency batch executor.

Runs an ordered list of heterogeneous operations either strictly in order or
in contiguous chunks of `max_concurrency` operations. Every chunk is a
barrier: the next one starts only after all of its operations settled.
Results always come back in input order.

Failure policy:
- A handler exception becomes a failed BatchResult at the operation boundary
- Sequential + continue_on_error=False stops after the first failure
  (the result list is a prefix of the input)
- Parallel + continue_on_error=False finishes the current chunk, then stops
- Dry run is checked first and skips every operation
"""

import asyncio
import json
import os
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from fscrape.models.batch import (
    BatchConfig,
    BatchOperation,
    BatchReport,
    BatchResult,
    BatchStatus,
    BatchSummary,
    OperationKind,
)
from fscrape.models.session import SessionStatus, SourceKind
from fscrape.observability.context import correlation_id_context
from fscrape.observability.metrics import BATCH_OPERATION_DURATION, BATCH_OPERATIONS
from fscrape.orchestration.scrape_job import ScrapeJob
from fscrape.output.exporter import Exporter
from fscrape.services.providers.base import SourceAdapter
from fscrape.services.providers.hackernews import HackerNewsAdapter
from fscrape.services.providers.reddit import RedditAdapter
from fscrape.services.store_base import SessionStore
from fscrape.session.manager import SessionManager
from fscrape.utils.exceptions import OperationError, UnsupportedOperationError

logger = structlog.get_logger()

Handler = Callable[[BatchOperation], Awaitable[Any]]

DEFAULT_HN_TARGET = "top"


def default_adapters() -> Dict[SourceKind, SourceAdapter]:
    return {
        SourceKind.REDDIT: RedditAdapter(),
        SourceKind.HACKERNEWS: HackerNewsAdapter(),
    }


class BatchProcessor:
    """Dispatches batch operations to the store, exporter, adapters and
    session manager.
    """

    def __init__(
        self,
        store: SessionStore,
        manager: SessionManager,
        exporter: Optional[Exporter] = None,
        adapters: Optional[Dict[SourceKind, SourceAdapter]] = None,
        page_size: int = 25,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """Initialize batch processor.

        Args:
            store: Post and session store
            manager: Session manager wrapping scrape operations
            exporter: Renderer for export operations
            adapters: Source adapters by source kind
            page_size: Items requested per adapter call
            clock: Timestamp source for reports
        """
        self.store = store
        self.manager = manager
        self.exporter = exporter or Exporter()
        self.adapters = adapters if adapters is not None else default_adapters()
        self.page_size = page_size
        self._clock = clock

        self._handlers: Dict[str, Handler] = {
            OperationKind.SCRAPE.value: self._handle_scrape,
            OperationKind.EXPORT.value: self._handle_export,
            OperationKind.PURGE.value: self._handle_purge,
            OperationKind.ADMIN.value: self._handle_admin,
        }
        self._admin_actions: Dict[str, Callable[[BatchOperation], Any]] = {
            "backup": self._admin_backup,
            "restore": self._admin_restore,
            "cleanup": self._admin_cleanup,
            "recover": self._admin_recover,
        }

        self.config: Optional[BatchConfig] = None
        self.results: List[BatchResult] = []

    async def execute(self, config: BatchConfig) -> List[BatchResult]:
        """Run a batch and return one result per executed operation.

        Results are collected per call; `results` and `config` describe the
        most recently finished run.
        """
        results: List[BatchResult] = []

        with correlation_id_context() as batch_id:
            logger.info(
                "batch_started",
                batch_id=batch_id,
                operations=len(config.operations),
                parallel=config.parallel,
                max_concurrency=config.max_concurrency,
                continue_on_error=config.continue_on_error,
                dry_run=config.dry_run,
            )

            if config.parallel:
                await self._execute_parallel(config, results)
            else:
                await self._execute_sequential(config, results)

            summary = BatchSummary.from_results(results)
            logger.info(
                "batch_completed",
                batch_id=batch_id,
                total=summary.total,
                success=summary.success,
                failed=summary.failed,
                skipped=summary.skipped,
            )

        self.config = config
        self.results = results
        return list(results)

    async def _execute_sequential(
        self, config: BatchConfig, results: List[BatchResult]
    ) -> None:
        for operation in config.operations:
            result = await self._execute_operation(operation, config.dry_run)
            results.append(result)

            if result.status == BatchStatus.FAILED and not config.continue_on_error:
                logger.warning(
                    "batch_stopped_on_failure",
                    operation=operation.label,
                    remaining=len(config.operations) - len(results),
                )
                break

    async def _execute_parallel(
        self, config: BatchConfig, results: List[BatchResult]
    ) -> None:
        operations = config.operations
        size = config.max_concurrency

        for start in range(0, len(operations), size):
            chunk = operations[start : start + size]
            # gather preserves argument order regardless of completion order
            chunk_results = await asyncio.gather(
                *(self._execute_operation(op, config.dry_run) for op in chunk)
            )
            results.extend(chunk_results)

            if not config.continue_on_error and any(
                r.status == BatchStatus.FAILED for r in chunk_results
            ):
                logger.warning(
                    "batch_stopped_on_failure",
                    chunk=start // size,
                    remaining=len(operations) - len(results),
                )
                break

    async def _execute_operation(
        self, operation: BatchOperation, dry_run: bool
    ) -> BatchResult:
        started = time.perf_counter()

        if dry_run:
            return self._result(
                operation,
                BatchStatus.SKIPPED,
                started,
                message=f"Dry run: would {operation.label}",
            )

        handler = self._handlers.get(operation.kind)
        if handler is None:
            logger.error("batch_operation_unknown", kind=operation.kind)
            return self._result(
                operation,
                BatchStatus.FAILED,
                started,
                message=f"Unknown operation: {operation.kind}",
            )

        try:
            payload = await handler(operation)
        except Exception as e:
            logger.error(
                "batch_operation_failed",
                operation=operation.label,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._result(
                operation,
                BatchStatus.FAILED,
                started,
                message=str(e) or type(e).__name__,
            )

        return self._result(operation, BatchStatus.SUCCESS, started, payload=payload)

    def _result(
        self,
        operation: BatchOperation,
        status: BatchStatus,
        started: float,
        message: Optional[str] = None,
        payload: Any = None,
    ) -> BatchResult:
        duration = time.perf_counter() - started
        BATCH_OPERATIONS.labels(kind=operation.kind, status=status.value).inc()
        BATCH_OPERATION_DURATION.labels(kind=operation.kind).observe(duration)

        logger.info(
            "batch_operation_finished",
            operation=operation.label,
            status=status.value,
            duration_ms=round(duration * 1000, 2),
        )
        return BatchResult(
            operation=operation,
            status=status,
            message=message,
            payload=payload,
            duration_ms=duration * 1000,
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_scrape(self, operation: BatchOperation) -> Dict[str, Any]:
        source = self._resolve_source(operation.target)
        adapter = self.adapters.get(source)
        if adapter is None:
            raise OperationError(f"No adapter configured for {source.value}")

        options = operation.options
        resume_from = options.get("resume_from")
        targets = list(operation.items)
        if not targets and not resume_from:
            if source != SourceKind.HACKERNEWS:
                raise OperationError(f"scrape {source.value} needs at least one target")
            targets = [DEFAULT_HN_TARGET]

        job = ScrapeJob(self.manager, adapter, self.store, page_size=self.page_size)
        max_items = options.get("max_items", options.get("limit"))

        sessions = []
        if resume_from:
            sessions.append(await job.run(resume_from=resume_from))
        for target in targets:
            sessions.append(await job.run(target=target, max_items=max_items))

        failed = [s for s in sessions if s.status == SessionStatus.FAILED]
        if failed:
            raise OperationError(
                f"{len(failed)} of {len(sessions)} scrape session(s) failed: "
                + ", ".join(s.id for s in failed)
            )

        return {
            "sessions": [s.id for s in sessions],
            "items": sum(s.progress.processed_items for s in sessions),
        }

    async def _handle_export(self, operation: BatchOperation) -> Dict[str, Any]:
        fmt = (operation.target or operation.options.get("format") or "json").lower()
        if fmt not in self.exporter.formats:
            raise UnsupportedOperationError(f"Unsupported export format: {fmt}")

        output_dir = operation.options.get("output_dir") or (
            operation.items[0] if operation.items else "./exports"
        )
        source = operation.options.get("source")
        posts = self.store.list_posts(
            source_kind=SourceKind(source) if source else None,
            limit=operation.options.get("limit"),
        )

        path = self.exporter.export(posts, fmt, output_dir)
        return {"path": str(path), "records": len(posts)}

    async def _handle_purge(self, operation: BatchOperation) -> Dict[str, Any]:
        days = operation.options.get("days")
        if days is None and operation.target:
            days = operation.target
        try:
            age = timedelta(days=int(days if days is not None else 30))
        except (TypeError, ValueError):
            raise OperationError(f"Invalid purge age: {days!r}")

        source = operation.options.get("source")
        posts = self.store.delete_posts_older_than(
            age, SourceKind(source) if source else None
        )
        sessions = self.store.delete_sessions_older_than(age)
        return {"posts_deleted": posts, "sessions_deleted": sessions}

    async def _handle_admin(self, operation: BatchOperation) -> Any:
        action = (operation.target or "").lower()
        handler = self._admin_actions.get(action)
        if handler is None:
            raise UnsupportedOperationError(f"Unknown admin action: {action or '(none)'}")
        return handler(operation)

    def _admin_backup(self, operation: BatchOperation) -> Dict[str, Any]:
        path = self._admin_path(operation)
        if not self.manager.create_backup(path):
            raise OperationError(f"Backup to {path} failed")
        return {"path": str(path), "sessions": len(self.manager.get_all_sessions())}

    def _admin_restore(self, operation: BatchOperation) -> Dict[str, Any]:
        path = self._admin_path(operation)
        if not Path(path).exists():
            raise OperationError(f"Backup file not found: {path}")
        return {"path": str(path), "restored": self.manager.restore_from_backup(path)}

    def _admin_cleanup(self, operation: BatchOperation) -> Dict[str, Any]:
        hours = operation.options.get("hours")
        age = timedelta(hours=float(hours)) if hours is not None else None
        removed = self.manager.cleanup(age)
        corrupted = self.manager.state.cleanup_corrupted_states()
        return {"sessions_removed": removed, "corrupted_removed": corrupted}

    def _admin_recover(self, operation: BatchOperation) -> Dict[str, Any]:
        return {"recovered": self.manager.recover_sessions()}

    @staticmethod
    def _admin_path(operation: BatchOperation) -> str:
        path = operation.options.get("path") or (
            operation.items[0] if operation.items else None
        )
        if not path:
            raise OperationError(f"admin {operation.target} needs a file path")
        return path

    @staticmethod
    def _resolve_source(target: Optional[str]) -> SourceKind:
        try:
            return SourceKind((target or "").lower())
        except ValueError:
            raise UnsupportedOperationError(f"Unknown source: {target or '(none)'}")

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def summary(self) -> BatchSummary:
        return BatchSummary.from_results(self.results)

    def build_report(self) -> BatchReport:
        return BatchReport(
            timestamp=self._clock(),
            config=self.config or BatchConfig(),
            results=list(self.results),
            summary=self.summary(),
        )

    def save_results(self, output_path: str | Path) -> Path:
        """Write `{timestamp, config, results, summary}` as JSON atomically"""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        report = self.build_report().model_dump(mode="json")
        temp_file = path.with_suffix(path.suffix + ".tmp")
        with open(temp_file, "w") as f:
            json.dump(report, f, indent=2, default=str)
        os.replace(temp_file, path)

        logger.info("batch_report_saved", path=str(path))
        return path
