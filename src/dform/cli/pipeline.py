"""Pipeline commands: compile, run."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.table import Table

from dform.cli import (
    DefaultDatabaseOption,
    DefaultLocationOption,
    JsonOption,
    SchemaSuffixOption,
    VarsOption,
    _build_overrides,
    _fail,
    _resolve_project,
    _split_list,
    app,
    console,
    err_console,
)
from dform.engine.errors import DformError, GraphCompilationError


@app.command()
def compile(
    project_dir: Annotated[Path, typer.Argument(help="Project directory")],
    json_output: JsonOption = False,
    vars: VarsOption = None,
    schema_suffix: SchemaSuffixOption = None,
    default_database: DefaultDatabaseOption = None,
    default_location: DefaultLocationOption = None,
) -> None:
    """Compile the project into a graph of actions.

    Exits 0 when the graph compiles, even if it carries graph errors.
    """
    from dform.engine.graph import compile_graph, compiled_graph_to_dict, to_json

    project_dir = _resolve_project(project_dir)
    overrides = _build_overrides(vars, schema_suffix, default_database, default_location)
    try:
        graph = compile_graph(project_dir, overrides)
    except DformError as e:
        _fail(str(e))

    if json_output:
        typer.echo(to_json(compiled_graph_to_dict(graph)))
        return

    table = Table(title="Compiled Actions")
    table.add_column("Type")
    table.add_column("Target", style="bold")
    table.add_column("File")
    table.add_column("Tags")
    for action in graph.actions:
        type_label = action.type.value + (" [dim](disabled)[/dim]" if action.disabled else "")
        table.add_row(type_label, action.target.full_name, action.file_name, ", ".join(action.tags))
    console.print(table)
    _print_graph_errors(graph.graph_errors)
    console.print(
        f"  {len(graph.actions)} action(s), {len(graph.graph_errors)} error(s) "
        f"[dim](core {graph.dataform_core_version})[/dim]"
    )


def _print_graph_errors(errors) -> None:
    for error in errors:
        where = f"{error.file_name}: " if error.file_name else ""
        console.print(f"  [red]error[/red] {escape(where + error.message)}")


@app.command()
def run(
    project_dir: Annotated[Path, typer.Argument(help="Project directory")],
    credentials: Annotated[Path, typer.Option("--credentials", help="Warehouse credentials file")],
    dry_run: Annotated[bool, typer.Option(
        "--dry-run",
        help="Only produce the plan. Required: statements are sent to the warehouse by an external executor",
    )] = False,
    json_output: JsonOption = False,
    vars: VarsOption = None,
    schema_suffix: SchemaSuffixOption = None,
    default_database: DefaultDatabaseOption = None,
    default_location: DefaultLocationOption = None,
    tags: Annotated[Optional[str], typer.Option("--tags", help="Only run actions with one of these tags (comma-separated)")] = None,
    actions: Annotated[Optional[str], typer.Option("--actions", help="Only run these actions (comma-separated)")] = None,
    include_deps: Annotated[bool, typer.Option("--include-deps", help="Also run dependencies of selected actions")] = False,
    full_refresh: Annotated[bool, typer.Option("--full-refresh", help="Rebuild incremental tables from scratch")] = False,
    allow_graph_errors: Annotated[bool, typer.Option("--allow-graph-errors", help="Plan the actions that compiled even if others failed")] = False,
) -> None:
    """Compile the project and build an ordered plan of SQL statements.

    Only dry runs are supported; anything else is refused before planning.
    """
    from dform.engine.graph import (
        RunConfig,
        build_run_plan,
        compile_graph,
        execution_graph_to_dict,
        to_json,
    )

    project_dir = _resolve_project(project_dir)
    if not credentials.exists():
        _fail(f"Credentials file not found: {credentials}")
    if not dry_run:
        _fail(
            "Sending statements to a warehouse is handled by an external executor; "
            "re-run with --dry-run to only produce the plan"
        )

    overrides = _build_overrides(vars, schema_suffix, default_database, default_location)
    selected = _split_list(actions)
    run_config = RunConfig(
        full_refresh=full_refresh,
        tags=_split_list(tags),
        actions=selected or None,
        include_dependencies=include_deps,
        allow_graph_errors=allow_graph_errors,
    )

    try:
        graph = compile_graph(project_dir, overrides)
        plan = build_run_plan(graph, run_config)
    except GraphCompilationError as e:
        for error in e.errors:
            where = f"{error.file_name}: " if error.file_name else ""
            err_console.print(f"  [red]error[/red] {escape(where + error.message)}")
        _fail(f"{e} (use --allow-graph-errors to run the rest)")
    except DformError as e:
        _fail(str(e))

    if json_output:
        typer.echo(to_json(execution_graph_to_dict(plan)))
        return

    console.print("[bold]Run plan[/bold] [dim](dry run)[/dim]:")
    if not plan.actions:
        console.print("[yellow]No actions matched the selection.[/yellow]")
    for execution in plan.actions:
        console.print(
            f"  [bold]{execution.target.full_name}[/bold] ({execution.type.value}, "
            f"{execution.hermeticity.value.lower()})"
        )
        for task in execution.tasks:
            console.print(f"    [dim]{task.type}[/dim]  {escape(task.statement)}")
