#!/usr/bin/env python3
"""Skiff CLI - keep per-environment compose overrides in sync."""

import typer
from rich.console import Console

from skiff.cli_dev_commands import register_dev_commands
from skiff.cli_project_commands import register_project_commands
from skiff.core.logger import get_logger

app = typer.Typer(
    name="skiff",
    help="""Skiff - per-environment overrides for one docker-compose description

Quick start:
  skiff init -e dev -e prod     # Create skiff.yaml and one override per environment
  skiff reconcile               # Sync overrides after editing docker-compose.yaml
  skiff dev -e dev              # Reconcile on every change
""",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

register_project_commands(app, console)
register_dev_commands(app, console)

if __name__ == "__main__":
    app()
