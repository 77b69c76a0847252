"""Project management commands: init, install."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Annotated, Optional

import typer

from dform import CORE_VERSION
from dform.cli import _fail, app, console
from dform.config import WORKFLOW_SETTINGS_FILE, WorkflowSettings
from dform.engine.errors import DformError
from dform.engine.graph.discovery import DEFINITIONS_DIR

INCLUDES_DIR = "includes"
GITIGNORE_TEMPLATE = "node_modules/\n"


@app.command()
def init(
    project_dir: Annotated[Path, typer.Argument(help="Directory to create the project in")],
    database_arg: Annotated[Optional[str], typer.Argument(metavar="[DEFAULT_DATABASE]", help="Default database (GCP project)")] = None,
    location_arg: Annotated[Optional[str], typer.Argument(metavar="[DEFAULT_LOCATION]", help="Default location")] = None,
    default_database: Annotated[Optional[str], typer.Option("--default-database", help="Default database (GCP project)")] = None,
    default_location: Annotated[Optional[str], typer.Option("--default-location", help="Default location")] = None,
) -> None:
    """Scaffold a new project with a workflow_settings.yaml."""
    database = default_database or database_arg
    location = default_location or location_arg or "US"
    if not database:
        _fail("A default database is required: pass it as an argument or with --default-database")

    settings_path = project_dir / WORKFLOW_SETTINGS_FILE
    if settings_path.exists():
        _fail(f"{settings_path} already exists; refusing to overwrite it")

    project_dir.mkdir(parents=True, exist_ok=True)
    for d in (DEFINITIONS_DIR, INCLUDES_DIR):
        (project_dir / d).mkdir(exist_ok=True)

    settings = WorkflowSettings(
        dataform_core_version=CORE_VERSION,
        default_project=database,
        default_location=location,
    )
    settings_path.write_text(settings.to_yaml())

    gitignore_path = project_dir / ".gitignore"
    if not gitignore_path.exists():
        gitignore_path.write_text(GITIGNORE_TEMPLATE)

    console.print(f"[green]Project created at {project_dir}[/green]")
    console.print()
    console.print("Structure:")
    console.print(f"  {WORKFLOW_SETTINGS_FILE}")
    for d in (DEFINITIONS_DIR, INCLUDES_DIR):
        console.print(f"  {d}/")


@app.command()
def install(
    project_dir: Annotated[Path, typer.Argument(help="Project directory")],
) -> None:
    """Install npm packages for projects that declare the core version in package.json."""
    from dform.engine.settings import check_installable

    try:
        check_installable(project_dir)
    except DformError as e:
        _fail(str(e))

    try:
        result = subprocess.run(["npm", "install"], cwd=project_dir)
    except FileNotFoundError:
        _fail("npm was not found on PATH; install Node.js and try again")
    if result.returncode != 0:
        raise typer.Exit(result.returncode)
    console.print("[green]Packages installed[/green]")
