"""Main entry point for running junior as a module.

Usage:
    python -m junior --help
    python -m junior run . --progress progress.txt
    python -m junior status
"""

from __future__ import annotations

from .cli import app

if __name__ == "__main__":
    app()
