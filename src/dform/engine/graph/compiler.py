"""Graph compilation: load definitions, compute targets, render templates, merge."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from graphlib import CycleError, TopologicalSorter
from pathlib import Path

from dform import CORE_VERSION
from dform.config import ProjectConfig, ProjectConfigOverride
from dform.engine.settings import load_project_config, resolve_core_version

from .discovery import Definition, DefinitionError, discover_definitions, load_definition
from .models import Action, ActionType, CompiledGraph, GraphError, GraphErrorKind, Target
from .templating import RenderResult, TemplateContext, render

logger = logging.getLogger("dform.compile")


@dataclass
class _LoadedDefinition:
    definition: Definition
    canonical_target: Target
    target: Target


def compute_targets(
    definition: Definition,
    base_config: ProjectConfig,
    project_config: ProjectConfig,
) -> tuple[Target, Target]:
    """Return ``(canonical_target, target)`` for a definition.

    The canonical target only uses the declared project defaults. The runtime
    target additionally applies the schema suffix and database override from
    ``project_config``. Declarations name external tables and are never rewritten.
    """
    config = definition.config
    if config.type == ActionType.ASSERTION:
        default_schema = base_config.assertion_schema
    else:
        default_schema = base_config.default_schema
    schema = config.schema_name or default_schema

    canonical = Target(
        database=config.database or base_config.default_database,
        schema=schema,
        name=definition.name,
    )
    if config.type == ActionType.DECLARATION:
        return canonical, canonical

    runtime_schema = schema
    if project_config.schema_suffix:
        runtime_schema = f"{schema}_{project_config.schema_suffix}"
    target = Target(
        database=config.database or project_config.default_database,
        schema=runtime_schema,
        name=definition.name,
    )
    return canonical, target


def _load(
    path: Path,
    project_dir: Path,
    base_config: ProjectConfig,
    project_config: ProjectConfig,
) -> _LoadedDefinition | GraphError:
    file_name = path.relative_to(project_dir).as_posix()
    try:
        definition = load_definition(path, project_dir)
    except DefinitionError as e:
        return GraphError(str(e), file_name, GraphErrorKind.FILE_PARSE)
    canonical, target = compute_targets(definition, base_config, project_config)
    return _LoadedDefinition(definition, canonical, target)


def _merge(loaded: list[_LoadedDefinition | GraphError]) -> tuple[list[_LoadedDefinition], list[GraphError]]:
    """Drop duplicate canonical targets; the first file in discovery order wins."""
    errors: list[GraphError] = []
    unique: dict[Target, _LoadedDefinition] = {}
    for item in loaded:
        if isinstance(item, GraphError):
            errors.append(item)
            continue
        existing = unique.get(item.canonical_target)
        if existing is not None:
            errors.append(GraphError(
                f"Duplicate action name detected: '{item.canonical_target.full_name}' is defined "
                f"in both {existing.definition.file_name} and {item.definition.file_name}",
                item.definition.file_name,
                GraphErrorKind.DUPLICATE_TARGET,
            ))
            continue
        unique[item.canonical_target] = item
    return list(unique.values()), errors


def _check_cycles(actions: list[Action]) -> list[GraphError]:
    sorter: TopologicalSorter[Target] = TopologicalSorter()
    for action in actions:
        sorter.add(action.canonical_target, *action.dependency_targets)
    try:
        sorter.prepare()
    except CycleError as e:
        cycle = " -> ".join(t.full_name for t in e.args[1])
        return [GraphError(f"Circular dependency detected: {cycle}", None, GraphErrorKind.CIRCULAR_DEPENDENCY)]
    return []


def compile_graph(
    project_dir: Path,
    overrides: ProjectConfigOverride | None = None,
    max_workers: int = 4,
) -> CompiledGraph:
    """Compile every definition in the project into a CompiledGraph.

    Settings problems are fatal and raise ``ConfigError`` subclasses. Problems in
    individual files are collected into ``graph_errors`` and never abort the
    compile.

    Args:
        project_dir: Project root containing workflow_settings.yaml (or package.json).
        overrides: CLI-level overrides (vars, schema suffix, database, location).
        max_workers: Threads used for per-file loading and rendering.
    """
    project_dir = Path(project_dir)
    source = resolve_core_version(project_dir)
    if source.version.split(".")[0] != CORE_VERSION.split(".")[0]:
        logger.warning(
            "Project requests core version %s; compiling with %s", source.version, CORE_VERSION
        )

    base_config = load_project_config(project_dir, source)
    project_config = base_config.with_overrides(overrides)
    paths = discover_definitions(project_dir)
    logger.debug("Discovered %d definition files in %s", len(paths), project_dir)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        loaded = list(executor.map(
            lambda p: _load(p, project_dir, base_config, project_config), paths
        ))

        # Single synchronization point: duplicates need the full set of files.
        unique, graph_errors = _merge(loaded)
        actions = [
            Action(
                type=item.definition.config.type,
                canonical_target=item.canonical_target,
                target=item.target,
                file_name=item.definition.file_name,
                tags=list(item.definition.config.tags),
                disabled=item.definition.config.disabled,
                description=item.definition.config.description,
                hermetic=item.definition.config.hermetic,
            )
            for item in unique
        ]
        index = CompiledGraph(actions=actions, project_config=project_config)

        def _render(pair: tuple[Action, _LoadedDefinition]) -> tuple[RenderResult, RenderResult | None]:
            action, item = pair
            context = TemplateContext(
                file_name=action.file_name,
                project_config=project_config,
                self_target=action.target,
                resolve_ref=lambda args: index.find(".".join(args)),
            )
            full = render(item.definition.template, context)
            if action.type != ActionType.INCREMENTAL:
                return full, None
            return full, render(item.definition.template, replace(context, incremental=True))

        rendered = list(executor.map(_render, zip(actions, unique)))

    for action, item, (result, incremental) in zip(actions, unique, rendered):
        action.query = result.text
        dependencies = list(result.dependencies)
        graph_errors.extend(result.errors)
        if incremental is not None:
            action.incremental_query = incremental.text
            dependencies.extend(d for d in incremental.dependencies if d not in dependencies)
            graph_errors.extend(e for e in incremental.errors if e not in result.errors)
        action.dependency_targets = [d.canonical_target for d in dependencies]
        for name in item.definition.config.dependencies:
            dependency = index.find(name)
            if dependency is None:
                graph_errors.append(GraphError(
                    f"Missing dependency detected: '{name}' declared in {action.file_name} "
                    f"does not exist",
                    action.file_name,
                    GraphErrorKind.UNRESOLVED_REFERENCE,
                ))
            elif dependency.canonical_target not in action.dependency_targets:
                action.dependency_targets.append(dependency.canonical_target)

    graph_errors.extend(_check_cycles(actions))

    logger.info("Compiled %d actions with %d graph errors", len(actions), len(graph_errors))
    return CompiledGraph(
        actions=actions,
        project_config=project_config,
        graph_errors=graph_errors,
        dataform_core_version=source.version,
    )
