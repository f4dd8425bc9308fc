"""CLI entry point.

Allows running the CLI as a module: python -m fscrape.cli
"""

from fscrape.cli import app

if __name__ == "__main__":
    app()
