"""Shared utilities for Skiff CLI modules."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from skiff.core.config import get_config


def find_project_dir(directory: Optional[str] = None) -> Path:
    """Locate the project directory: explicit option, SKIFF_CONFIG_DIR, then cwd."""
    if directory:
        return Path(directory)
    return Path(get_config().working_dir)


def setup_file_logging(
    log_file: Optional[str] = None, verbose: bool = False, directory: Optional[str] = None
) -> None:
    """Set up file logging for CLI commands.

    Args:
        log_file: Path to log file (defaults to the project's .skiff/skiff.log)
        verbose: Enable verbose logging
        directory: Project directory option of the command
    """
    from skiff.core.logger import setup_file_logging as _setup_file_logging
    _setup_file_logging(log_file=log_file, verbose=verbose, working_dir=find_project_dir(directory))


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use
    """
    console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    console.print(f"[green]{prefix}[/green] {escape(message)}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    console.print(f"[red]{prefix}[/red] {escape(message)}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {escape(message)}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[cyan]{prefix}[/cyan] {escape(message)}")
