"""fscrape CLI Package.

Provides the command-line interface for the fscrape session and batch engine.

Usage:
    python -m fscrape.cli batch operations.txt --parallel --max-concurrency 3
    python -m fscrape.cli sessions list --status paused
    python -m fscrape.cli sessions show reddit_3f2a9c1b7d4e
    python -m fscrape.cli sessions backup backups/sessions.json
"""

import typer

from fscrape.cli.batch import batch_command
from fscrape.cli.sessions import sessions_app

# Create main app
app = typer.Typer(help="fscrape: forum scraping sessions and batch orchestration")

# Register individual commands
app.command(name="batch")(batch_command)

# Register sub-applications
app.add_typer(sessions_app, name="sessions")

__all__ = [
    "app",
    "batch_command",
    "sessions_app",
]
