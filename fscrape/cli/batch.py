"""Batch command.

Loads a batch file, executes it and optionally saves a JSON report.
"""

import asyncio
from pathlib import Path
from typing import List, Optional

import typer

from fscrape.cli.utils import (
    build_engine,
    display_error,
    display_info,
    display_success,
    display_warning,
    handle_errors,
    load_config,
)
from fscrape.models.batch import BatchConfig, BatchResult, BatchStatus
from fscrape.orchestration.batch_loader import load_batch_config
from fscrape.orchestration.batch_processor import BatchProcessor

STATUS_COLORS = {
    BatchStatus.SUCCESS: typer.colors.GREEN,
    BatchStatus.FAILED: typer.colors.RED,
    BatchStatus.SKIPPED: typer.colors.YELLOW,
}


@handle_errors
def batch_command(
    batch_file: Path = typer.Argument(..., help="Batch file (.json, .yaml or .txt)"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to engine config YAML"
    ),
    parallel: Optional[bool] = typer.Option(
        None, "--parallel/--sequential", help="Run operations in concurrent chunks"
    ),
    max_concurrency: Optional[int] = typer.Option(
        None, "--max-concurrency", "-m", min=1, help="Chunk size in parallel mode"
    ),
    fail_fast: bool = typer.Option(
        False, "--fail-fast", help="Stop scheduling after the first failure"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Skip every operation and report what would run"
    ),
    report: Optional[Path] = typer.Option(
        None, "--report", "-r", help="Write a JSON report to this path"
    ),
):
    """Execute a batch of scrape, export, purge and admin operations."""
    config = load_config(config_path)

    try:
        batch_config = load_batch_config(batch_file, defaults=config.batch)
    except FileNotFoundError as e:
        display_error(str(e))
        raise typer.Exit(code=1)

    overrides = {}
    if parallel is not None:
        overrides["parallel"] = parallel
    if max_concurrency is not None:
        overrides["max_concurrency"] = max_concurrency
    if fail_fast:
        overrides["continue_on_error"] = False
    if dry_run:
        overrides["dry_run"] = True
    batch_config = batch_config.model_copy(update=overrides)

    if not batch_config.operations:
        display_warning("Batch file contains no operations")
        return

    mode = (
        f"parallel (max {batch_config.max_concurrency})"
        if batch_config.parallel
        else "sequential"
    )
    display_info(f"Running {len(batch_config.operations)} operation(s), {mode}")
    if batch_config.dry_run:
        display_warning("Dry run: no operation will be executed")

    processor, results = asyncio.run(_run_batch(config, batch_config))

    _display_results(results, len(batch_config.operations))

    if report:
        saved = processor.save_results(report)
        display_info(f"Report saved to {saved}")

    if processor.summary().failed:
        raise typer.Exit(code=1)


async def _run_batch(config, batch_config: BatchConfig):
    store, manager = build_engine(config)
    processor = BatchProcessor(
        store=store, manager=manager, page_size=config.sessions.page_size
    )

    manager.start_background_tasks()
    try:
        results = await processor.execute(batch_config)
    finally:
        manager.shutdown()
        for adapter in processor.adapters.values():
            await adapter.close()

    return processor, results


def _display_results(results: List[BatchResult], submitted: int) -> None:
    for result in results:
        line = f"[{result.status.value:>7}] {result.operation.label} ({result.duration_ms:.0f} ms)"
        if result.message:
            line = f"{line}: {result.message}"
        typer.secho(line, fg=STATUS_COLORS[result.status])

    success = sum(1 for r in results if r.status == BatchStatus.SUCCESS)
    failed = sum(1 for r in results if r.status == BatchStatus.FAILED)
    skipped = sum(1 for r in results if r.status == BatchStatus.SKIPPED)

    typer.echo("")
    summary = f"Total: {len(results)}, Success: {success}, Failed: {failed}, Skipped: {skipped}"
    if failed:
        display_error(summary)
    else:
        display_success(summary)

    if len(results) < submitted:
        display_warning(
            f"Stopped early: {submitted - len(results)} operation(s) not attempted"
        )
