"""Run plan generation: selection, ordering and statement tasks per action.

Planning is a pure function of the compiled graph and the run config. Dry
runs and real runs produce the same plan; only the external executor treats
them differently.
"""

from __future__ import annotations

import logging
from graphlib import CycleError, TopologicalSorter

from dform.engine.errors import DformError, GraphCompilationError
from dform.engine.sql_analysis import extract_table_refs, split_statements

from .models import (
    Action,
    ActionExecution,
    ActionType,
    CompiledGraph,
    ExecutionGraph,
    Hermeticity,
    RunConfig,
    Target,
    Task,
)
from .templating import quote_target

logger = logging.getLogger("dform.plan")

_SQLGLOT_DIALECTS = {
    "bigquery": "bigquery",
    "snowflake": "snowflake",
    "redshift": "redshift",
    "postgres": "postgres",
}


def _clean_query(query: str) -> str:
    """Drop trailing whitespace and semicolons so the query can be embedded."""
    return query.rstrip().rstrip(";").rstrip()


def build_tasks(action: Action, run_config: RunConfig, warehouse: str = "bigquery") -> list[Task]:
    """Statement tasks for one action, in execution order.

    Incremental actions are append-only outside a full refresh: the table is
    created empty if missing, then the incremental query is inserted. That
    query is the template rendered with ``incremental()`` true, so a
    ``${when(incremental(), "where ...")}`` filter is what keeps repeated runs
    from inserting the same rows again. Without one, every run appends the
    full result.
    """
    target = quote_target(action.target, warehouse)
    query = _clean_query(action.query)

    if action.type == ActionType.TABLE:
        return [Task(f"create or replace table {target} as {query}")]
    if action.type == ActionType.VIEW:
        return [Task(f"create or replace view {target} as {query}")]
    if action.type == ActionType.INCREMENTAL:
        if run_config.full_refresh:
            return [Task(f"create or replace table {target} as {query}")]
        incremental_query = _clean_query(action.incremental_query or action.query)
        return [
            Task(
                f"create table if not exists {target} as "
                f"select * from ({query}) as insertions where false"
            ),
            Task(f"insert into {target} select * from ({incremental_query}) as insertions"),
        ]
    if action.type == ActionType.ASSERTION:
        return [
            Task(f"create or replace view {target} as {query}"),
            Task(f"select sum(1) as row_count from {target}", type="assertion"),
        ]
    if action.type == ActionType.OPERATIONS:
        return [Task(statement) for statement in split_statements(action.query)]
    return []


def _suffix_match(ref: tuple[str, ...], known: set[tuple[str, ...]]) -> bool:
    return any(full[-len(ref):] == ref for full in known if len(ref) <= len(full))


def compute_hermeticity(action: Action, graph: CompiledGraph) -> Hermeticity:
    """HERMETIC when the action only reads tables produced by this graph.

    An explicit ``hermetic`` config value wins. Operations can do anything and
    are never hermetic. Dependencies on declarations (external tables), or query
    references to tables the graph does not produce, make an action non-hermetic.
    """
    if action.hermetic is not None:
        return Hermeticity.HERMETIC if action.hermetic else Hermeticity.NON_HERMETIC
    if action.type == ActionType.OPERATIONS:
        return Hermeticity.NON_HERMETIC

    by_canonical = {a.canonical_target: a for a in graph.actions}
    for dep in action.dependency_targets:
        dep_action = by_canonical.get(dep)
        if dep_action is None or dep_action.type == ActionType.DECLARATION:
            return Hermeticity.NON_HERMETIC

    produced = {
        tuple(part.lower() for part in (a.target.database, a.target.schema, a.target.name))
        for a in graph.actions
        if a.type != ActionType.DECLARATION
    }
    dialect = _SQLGLOT_DIALECTS.get(graph.project_config.warehouse)
    for ref in extract_table_refs(action.query, dialect=dialect):
        if not _suffix_match(ref, produced):
            return Hermeticity.NON_HERMETIC
    return Hermeticity.HERMETIC


def select_actions(graph: CompiledGraph, run_config: RunConfig) -> list[Action]:
    """Actions to run, in file-discovery order."""
    errored_files = {e.file_name for e in graph.graph_errors if e.file_name}
    by_canonical = {a.canonical_target: a for a in graph.actions}

    def runnable(action: Action) -> bool:
        return (
            not action.disabled
            and action.type != ActionType.DECLARATION
            and action.file_name not in errored_files
        )

    selected: set[Target] = set()
    for action in graph.actions:
        if run_config.tags and not set(action.tags) & set(run_config.tags):
            continue
        selected.add(action.canonical_target)

    if run_config.actions is not None:
        named: set[Target] = set()
        for name in run_config.actions:
            action = graph.find(name)
            if action is None:
                raise DformError(f"Unknown action '{name}'")
            named.add(action.canonical_target)
        selected &= named

    if run_config.include_dependencies:
        pending = list(selected)
        while pending:
            action = by_canonical.get(pending.pop())
            if action is None:
                continue
            for dep in action.dependency_targets:
                if dep not in selected:
                    selected.add(dep)
                    pending.append(dep)

    return [a for a in graph.actions if a.canonical_target in selected and runnable(a)]


def order_actions(actions: list[Action]) -> list[Action]:
    """Dependency order; actions that are ready together keep file-discovery order."""
    position = {a.canonical_target: i for i, a in enumerate(actions)}
    by_canonical = {a.canonical_target: a for a in actions}
    sorter: TopologicalSorter[Target] = TopologicalSorter()
    for action in actions:
        sorter.add(
            action.canonical_target,
            *[d for d in action.dependency_targets if d in by_canonical],
        )

    try:
        sorter.prepare()
    except CycleError:
        logger.warning("Dependency cycle among selected actions; using file order")
        return list(actions)

    ordered: list[Action] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=lambda t: position[t])
        ordered.extend(by_canonical[t] for t in ready)
        sorter.done(*ready)
    return ordered


def build_run_plan(graph: CompiledGraph, run_config: RunConfig | None = None) -> ExecutionGraph:
    """Turn a compiled graph into an ordered ExecutionGraph.

    Raises:
        GraphCompilationError: the graph has errors and ``allow_graph_errors`` is off.
    """
    run_config = run_config or RunConfig()
    if graph.graph_errors and not run_config.allow_graph_errors:
        raise GraphCompilationError(
            f"Cannot run a project with {len(graph.graph_errors)} compilation error(s)",
            graph.graph_errors,
        )

    warehouse = graph.project_config.warehouse
    executions = [
        ActionExecution(
            target=action.target,
            file_name=action.file_name,
            type=action.type,
            hermeticity=compute_hermeticity(action, graph),
            tasks=build_tasks(action, run_config, warehouse),
        )
        for action in order_actions(select_actions(graph, run_config))
    ]
    logger.info("Planned %d of %d actions", len(executions), len(graph.actions))
    return ExecutionGraph(
        actions=executions,
        project_config=graph.project_config,
        run_config=run_config,
    )
