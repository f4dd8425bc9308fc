"""Shared CLI utilities.

Provides configuration loading, engine wiring and consistent error output
for all CLI commands.
"""

import functools
from pathlib import Path
from typing import Callable, Optional, Tuple, TypeVar

import structlog
import typer

from fscrape.models.config import EngineConfig
from fscrape.observability.logging import configure_logging
from fscrape.services.config_manager import ConfigManager, ConfigValidationError
from fscrape.services.json_store import JsonFileStore
from fscrape.session.manager import SessionManager

logger = structlog.get_logger()

# Type variable for decorator
F = TypeVar("F", bound=Callable)


def load_config(config_path: Optional[Path]) -> EngineConfig:
    """Load and validate configuration, then configure logging from it.

    Args:
        config_path: Path to configuration file, None for defaults.

    Returns:
        Validated EngineConfig.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    config_manager = ConfigManager(config_path=str(config_path) if config_path else None)
    try:
        config = config_manager.load_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        typer.secho(f"Configuration Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    configure_logging(
        level=config.logging.level, json_output=config.logging.json_output
    )
    return config


def build_engine(config: EngineConfig) -> Tuple[JsonFileStore, SessionManager]:
    """Wire the store and session manager; recovery runs here."""
    store = JsonFileStore(config.store.data_dir)
    manager = SessionManager(store=store, settings=config.sessions)
    return store, manager


def load_stored_sessions(store: JsonFileStore, manager: SessionManager) -> int:
    """Bring terminal and paused store records into memory.

    Records already tracked (e.g. just recovered) are left alone.
    """
    records = [r for r in store.list_sessions() if r.get("id") not in manager.state]
    return manager.import_sessions(records)


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling.

    Catches exceptions and displays user-friendly error messages.

    Args:
        func: Function to wrap.

    Returns:
        Wrapped function with error handling.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            logger.exception("command_failed")
            typer.secho(f"Error: {e}", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    return wrapper  # type: ignore[return-value]


def display_success(message: str) -> None:
    typer.secho(message, fg=typer.colors.GREEN)


def display_warning(message: str) -> None:
    typer.secho(message, fg=typer.colors.YELLOW)


def display_error(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)


def display_info(message: str) -> None:
    typer.secho(message, fg=typer.colors.CYAN)
