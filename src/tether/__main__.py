"""tether CLI entry point."""

from __future__ import annotations

from tether.cli import app

if __name__ == "__main__":
    app()
