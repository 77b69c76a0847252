"""CLI interface for dform.

Split into modules by command group.
The Typer app and shared helpers live here; each module registers its commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape

from dform import setup_logging
from dform.config import ProjectConfigOverride, parse_vars

app = typer.Typer(
    name="dform",
    help="Compile SQLX projects into warehouse action graphs and run plans.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True, soft_wrap=True)


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    """Compile SQLX projects into warehouse action graphs and run plans."""
    if verbose:
        setup_logging("DEBUG")


def _fail(message: str) -> NoReturn:
    """Print a fatal error on stderr and exit non-zero."""
    err_console.print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(1)


def _resolve_project(project_dir: Path) -> Path:
    project_dir = project_dir.resolve()
    if not project_dir.is_dir():
        _fail(f"Project directory not found: {project_dir}")
    return project_dir


def _split_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _build_overrides(
    vars: str | None,
    schema_suffix: str | None,
    default_database: str | None,
    default_location: str | None,
) -> ProjectConfigOverride:
    try:
        parsed_vars = parse_vars(vars)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--vars")
    return ProjectConfigOverride(
        default_database=default_database,
        default_location=default_location,
        schema_suffix=schema_suffix,
        vars=parsed_vars,
    )


# Options shared by compile and run
VarsOption = Annotated[Optional[str], typer.Option("--vars", help="Variables as key=value,key=value")]
SchemaSuffixOption = Annotated[Optional[str], typer.Option("--schema-suffix", help="Suffix appended to every schema")]
DefaultDatabaseOption = Annotated[Optional[str], typer.Option("--default-database", help="Override the default database")]
DefaultLocationOption = Annotated[Optional[str], typer.Option("--default-location", help="Override the default location")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


# Import submodules so they register their commands on `app`.
from dform.cli import pipeline  # noqa: E402, F401
from dform.cli import project  # noqa: E402, F401
