"""JSON-ready representations of compiled graphs and run plans."""

from __future__ import annotations

import json
from typing import Any

from dform.config import ProjectConfig

from .models import (
    Action,
    ActionExecution,
    ActionType,
    CompiledGraph,
    ExecutionGraph,
    GraphError,
    RunConfig,
    Target,
)


def target_to_dict(target: Target) -> dict[str, str]:
    return {"database": target.database, "schema": target.schema, "name": target.name}


def project_config_to_dict(config: ProjectConfig) -> dict[str, Any]:
    data: dict[str, Any] = {
        "warehouse": config.warehouse,
        "defaultSchema": config.default_schema,
        "assertionSchema": config.assertion_schema,
        "defaultDatabase": config.default_database,
        "defaultLocation": config.default_location,
    }
    if config.vars:
        data["vars"] = dict(config.vars)
    if config.schema_suffix:
        data["schemaSuffix"] = config.schema_suffix
    return data


def action_to_dict(action: Action) -> dict[str, Any]:
    data: dict[str, Any] = {"type": action.type.value}
    if action.type.is_table_like:
        data["enumType"] = action.type.name
    data["target"] = target_to_dict(action.target)
    data["canonicalTarget"] = target_to_dict(action.canonical_target)
    if action.type != ActionType.DECLARATION:
        data["query"] = action.query
    if action.type == ActionType.INCREMENTAL:
        data["incrementalQuery"] = action.incremental_query
    data["disabled"] = action.disabled
    data["fileName"] = action.file_name
    data["tags"] = list(action.tags)
    if action.dependency_targets:
        data["dependencyTargets"] = [target_to_dict(t) for t in action.dependency_targets]
    if action.description:
        data["description"] = action.description
    if action.hermetic is not None:
        data["hermetic"] = action.hermetic
    return data


def graph_error_to_dict(error: GraphError) -> dict[str, str]:
    data = {"message": error.message, "kind": error.kind.value}
    if error.file_name:
        data["fileName"] = error.file_name
    return data


def compiled_graph_to_dict(graph: CompiledGraph) -> dict[str, Any]:
    """Serialize a compiled graph. Action lists appear only when non-empty."""
    data: dict[str, Any] = {}
    for key, actions in (
        ("tables", graph.tables),
        ("assertions", graph.assertions),
        ("operations", graph.operations),
        ("declarations", graph.declarations),
    ):
        if actions:
            data[key] = [action_to_dict(a) for a in actions]
    data["projectConfig"] = project_config_to_dict(graph.project_config)
    data["graphErrors"] = (
        {"compilationErrors": [graph_error_to_dict(e) for e in graph.graph_errors]}
        if graph.graph_errors
        else {}
    )
    data["dataformCoreVersion"] = graph.dataform_core_version
    data["targets"] = [target_to_dict(t) for t in graph.targets]
    return data


def run_config_to_dict(run_config: RunConfig) -> dict[str, Any]:
    data: dict[str, Any] = {"fullRefresh": run_config.full_refresh}
    if run_config.tags:
        data["tags"] = list(run_config.tags)
    if run_config.actions is not None:
        data["actions"] = list(run_config.actions)
    if run_config.include_dependencies:
        data["includeDependencies"] = True
    if run_config.allow_graph_errors:
        data["allowGraphErrors"] = True
    return data


def action_execution_to_dict(execution: ActionExecution) -> dict[str, Any]:
    if execution.type.is_table_like:
        action_type = "table"
    elif execution.type == ActionType.OPERATIONS:
        action_type = "operation"
    else:
        action_type = execution.type.value
    data: dict[str, Any] = {
        "fileName": execution.file_name,
        "hermeticity": execution.hermeticity.value,
    }
    if execution.table_type:
        data["tableType"] = execution.table_type
    data["target"] = target_to_dict(execution.target)
    data["tasks"] = [{"statement": t.statement, "type": t.type} for t in execution.tasks]
    data["type"] = action_type
    return data


def execution_graph_to_dict(plan: ExecutionGraph) -> dict[str, Any]:
    return {
        "actions": [action_execution_to_dict(a) for a in plan.actions],
        "projectConfig": project_config_to_dict(plan.project_config),
        "runConfig": run_config_to_dict(plan.run_config),
        "warehouseState": dict(plan.warehouse_state),
    }


def to_json(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=2)
