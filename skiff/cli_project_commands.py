"""Project CLI commands: init, reconcile, secrets."""
from typing import List, Optional

import typer
from rich.console import Console

# Module-level console instance (will be set by register function)
console: Console = Console()


def init(
    compose_file: Optional[List[str]] = typer.Option(
        None, "--file", "-f", help="Compose file (repeatable). Detected when omitted."
    ),
    env: Optional[List[str]] = typer.Option(
        None, "--env", "-e", help="Environment to create (repeatable). Defaults to 'dev'."
    ),
    directory: Optional[str] = typer.Option(None, "--dir", "-d", help="Project directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Initialise a project: write skiff.yaml and one override per environment."""
    from skiff.cli_support import find_project_dir, handle_cli_error, print_success, setup_file_logging
    from skiff.core.project import init_project
    from skiff.models.errors import SkiffError

    setup_file_logging(log_file=log_file, verbose=verbose, directory=directory)

    try:
        manifest = init_project(find_project_dir(directory), compose_file or None, env or None)
    except SkiffError as e:
        handle_cli_error(e, console, verbose)

    print_success(console, f"Created {manifest.path.name}")
    for name, file in manifest.select():
        print_success(console, f"Environment '{name}': {file}")


def reconcile(
    env: Optional[List[str]] = typer.Option(
        None, "--env", "-e", help="Environment to reconcile (repeatable). All when omitted."
    ),
    directory: Optional[str] = typer.Option(None, "--dir", "-d", help="Project directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output, including kept values"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Bring environment overrides in line with the compose sources."""
    from skiff.cli_support import (
        find_project_dir,
        handle_cli_error,
        print_error,
        print_info,
        print_success,
        setup_file_logging,
    )
    from skiff.core.change_report import ConsoleReporter
    from skiff.core.project import reconcile as reconcile_project
    from skiff.models.errors import SkiffError

    setup_file_logging(log_file=log_file, verbose=verbose, directory=directory)

    try:
        result = reconcile_project(
            find_project_dir(directory),
            env or None,
            reporter=ConsoleReporter(console),
            verbose=verbose,
        )
    except SkiffError as e:
        handle_cli_error(e, console, verbose)

    if result.failures:
        print_error(console, f"Failed environment(s): {', '.join(result.failures)}")
        raise typer.Exit(1)

    if result.report.is_empty():
        print_info(console, "All environments are up to date")
        return

    counts = ", ".join(f"{count} {kind}" for kind, count in result.report.summary().items())
    print_success(console, f"Reconciled: {counts}")


def secrets(
    directory: Optional[str] = typer.Option(None, "--dir", "-d", help="Project directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Look for literal env var values that should be bound to secrets."""
    from skiff.cli_support import (
        find_project_dir,
        handle_cli_error,
        print_success,
        print_warning,
        setup_file_logging,
    )
    from skiff.core.project import detect_secrets
    from skiff.models.errors import SkiffError

    setup_file_logging(log_file=log_file, verbose=verbose, directory=directory)

    try:
        findings = detect_secrets(find_project_dir(directory))
    except SkiffError as e:
        handle_cli_error(e, console, verbose)

    if not findings:
        print_success(console, "No literal secrets found")
        return

    print_warning(console, f"{len(findings)} potential secret(s) found")
    for finding in findings:
        console.print(f"  {finding.service}.{finding.variable}: {finding.description}", markup=False)


def register_project_commands(app: typer.Typer, shared_console: Console):
    """Register project commands with the main Typer app.

    Args:
        app: Main Typer application
        shared_console: Shared Rich console instance
    """
    global console
    console = shared_console

    app.command(name="init")(init)
    app.command(name="reconcile")(reconcile)
    app.command(name="secrets")(secrets)
