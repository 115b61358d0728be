"""Development mode CLI command."""
import threading
from typing import List, Optional

import typer
from rich.console import Console

# Module-level console instance (will be set by register function)
console: Console = Console()


def dev(
    env: Optional[List[str]] = typer.Option(
        None, "--env", "-e", help="Environment to keep reconciled (repeatable). All when omitted."
    ),
    directory: Optional[str] = typer.Option(None, "--dir", "-d", help="Project directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Watch compose sources and overrides, reconciling on every change.

    Press Ctrl+C to stop.
    """
    from skiff.cli_support import find_project_dir, handle_cli_error, print_info, setup_file_logging
    from skiff.core.change_report import ConsoleReporter
    from skiff.core.dev_loop import DevLoop
    from skiff.models.errors import SkiffError

    setup_file_logging(log_file=log_file, verbose=verbose, directory=directory)

    cancel = threading.Event()
    try:
        loop = DevLoop(
            find_project_dir(directory),
            env or None,
            reporter=ConsoleReporter(console),
            verbose=verbose,
        )
        loop.run(cancel)
    except SkiffError as e:
        handle_cli_error(e, console, verbose)
    except KeyboardInterrupt:
        cancel.set()
        print_info(console, "Development mode stopped")


def register_dev_commands(app: typer.Typer, shared_console: Console):
    """Register the dev command with the main Typer app."""
    global console
    console = shared_console

    app.command(name="dev")(dev)
