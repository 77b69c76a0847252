"""Tests for JSON serialization of compiled graphs and run plans."""

from __future__ import annotations

import json

from dform.config import ProjectConfig
from dform.engine.graph import (
    Action,
    ActionExecution,
    ActionType,
    CompiledGraph,
    ExecutionGraph,
    GraphError,
    GraphErrorKind,
    Hermeticity,
    RunConfig,
    Target,
    Task,
    compiled_graph_to_dict,
    execution_graph_to_dict,
    to_json,
)
from dform.engine.graph.reporting import action_to_dict, project_config_to_dict

CONFIG = ProjectConfig(
    default_database="db",
    default_location="US",
    schema_suffix="sfx",
    vars={"a": "1"},
)


def _table(name="example", **kwargs):
    return Action(
        type=ActionType.TABLE,
        canonical_target=Target("db", "dataform", name),
        target=Target("db", "dataform_sfx", name),
        file_name=f"definitions/{name}.sqlx",
        query="\n\nselect 1\n",
        **kwargs,
    )


class TestCompiledGraph:
    def test_shape(self):
        graph = CompiledGraph(
            actions=[_table(tags=["someTag"])],
            project_config=CONFIG,
            dataform_core_version="3.0.0",
        )
        assert compiled_graph_to_dict(graph) == {
            "tables": [{
                "type": "table",
                "enumType": "TABLE",
                "target": {"database": "db", "schema": "dataform_sfx", "name": "example"},
                "canonicalTarget": {"database": "db", "schema": "dataform", "name": "example"},
                "query": "\n\nselect 1\n",
                "disabled": False,
                "fileName": "definitions/example.sqlx",
                "tags": ["someTag"],
            }],
            "projectConfig": {
                "warehouse": "bigquery",
                "defaultSchema": "dataform",
                "assertionSchema": "dataform_assertions",
                "defaultDatabase": "db",
                "defaultLocation": "US",
                "vars": {"a": "1"},
                "schemaSuffix": "sfx",
            },
            "graphErrors": {},
            "dataformCoreVersion": "3.0.0",
            "targets": [{"database": "db", "schema": "dataform", "name": "example"}],
        }

    def test_errors(self):
        graph = CompiledGraph(
            actions=[],
            project_config=CONFIG,
            graph_errors=[GraphError("boom", "definitions/x.sqlx"), GraphError("cycle")],
        )
        data = compiled_graph_to_dict(graph)
        assert "tables" not in data
        assert data["graphErrors"] == {"compilationErrors": [
            {"message": "boom", "kind": "file_parse", "fileName": "definitions/x.sqlx"},
            {"message": "cycle", "kind": "file_parse"},
        ]}

    def test_error_kind_distinguishes_errors(self):
        graph = CompiledGraph(
            actions=[],
            project_config=CONFIG,
            graph_errors=[
                GraphError("Unknown variable 'x'", "definitions/a.sqlx", GraphErrorKind.UNKNOWN_VARIABLE),
                GraphError("Circular dependency detected", None, GraphErrorKind.CIRCULAR_DEPENDENCY),
            ],
        )
        errors = compiled_graph_to_dict(graph)["graphErrors"]["compilationErrors"]
        assert [e["kind"] for e in errors] == ["unknown_variable", "circular_dependency"]

    def test_incremental_query(self):
        target = Target("db", "dataform", "events")
        action = Action(
            type=ActionType.INCREMENTAL, canonical_target=target, target=target,
            file_name="definitions/events.sqlx",
            query="select * from src", incremental_query="select * from src where ts > 0",
        )
        data = action_to_dict(action)
        assert data["enumType"] == "INCREMENTAL"
        assert data["incrementalQuery"] == "select * from src where ts > 0"
        assert "incrementalQuery" not in action_to_dict(_table())

    def test_optional_action_fields(self):
        upstream = Target("db", "dataform", "upstream")
        data = action_to_dict(_table(
            description="Totals", dependency_targets=[upstream], hermetic=False,
        ))
        assert data["dependencyTargets"] == [{"database": "db", "schema": "dataform", "name": "upstream"}]
        assert data["description"] == "Totals"
        assert data["hermetic"] is False

    def test_declaration_and_assertion(self):
        target = Target("ext", "raw", "events")
        declaration = Action(
            type=ActionType.DECLARATION, canonical_target=target, target=target,
            file_name="definitions/events.sqlx",
        )
        data = action_to_dict(declaration)
        assert "query" not in data
        assert "enumType" not in data

        assertion = Action(
            type=ActionType.ASSERTION, canonical_target=target, target=target,
            file_name="definitions/check.sqlx", query="select 1",
        )
        graph = CompiledGraph(actions=[declaration, assertion], project_config=CONFIG)
        data = compiled_graph_to_dict(graph)
        assert [a["type"] for a in data["declarations"]] == ["declaration"]
        assert [a["type"] for a in data["assertions"]] == ["assertion"]

    def test_project_config_without_optional_fields(self):
        assert project_config_to_dict(ProjectConfig(default_database="db")) == {
            "warehouse": "bigquery",
            "defaultSchema": "dataform",
            "assertionSchema": "dataform_assertions",
            "defaultDatabase": "db",
            "defaultLocation": "",
        }


class TestExecutionGraph:
    def test_shape(self):
        plan = ExecutionGraph(
            actions=[ActionExecution(
                target=Target("db", "dataform", "example"),
                file_name="definitions/example.sqlx",
                type=ActionType.TABLE,
                hermeticity=Hermeticity.HERMETIC,
                tasks=[Task("create or replace table `db.dataform.example` as select 1")],
            )],
            project_config=ProjectConfig(default_database="db", default_location="europe"),
            run_config=RunConfig(tags=["someTag", "someOtherTag"]),
        )
        assert execution_graph_to_dict(plan) == {
            "actions": [{
                "fileName": "definitions/example.sqlx",
                "hermeticity": "HERMETIC",
                "tableType": "table",
                "target": {"database": "db", "schema": "dataform", "name": "example"},
                "tasks": [{
                    "statement": "create or replace table `db.dataform.example` as select 1",
                    "type": "statement",
                }],
                "type": "table",
            }],
            "projectConfig": {
                "warehouse": "bigquery",
                "defaultSchema": "dataform",
                "assertionSchema": "dataform_assertions",
                "defaultDatabase": "db",
                "defaultLocation": "europe",
            },
            "runConfig": {"fullRefresh": False, "tags": ["someTag", "someOtherTag"]},
            "warehouseState": {},
        }

    def test_operation_and_assertion_types(self):
        target = Target("db", "dataform", "x")
        plan = ExecutionGraph(
            actions=[
                ActionExecution(target, "definitions/ops.sqlx", ActionType.OPERATIONS, Hermeticity.NON_HERMETIC),
                ActionExecution(target, "definitions/chk.sqlx", ActionType.ASSERTION, Hermeticity.HERMETIC),
            ],
            project_config=CONFIG,
            run_config=RunConfig(full_refresh=True, actions=["x"], include_dependencies=True),
        )
        data = execution_graph_to_dict(plan)
        assert [a["type"] for a in data["actions"]] == ["operation", "assertion"]
        assert all("tableType" not in a for a in data["actions"])
        assert data["runConfig"] == {
            "fullRefresh": True,
            "actions": ["x"],
            "includeDependencies": True,
        }

    def test_to_json_round_trips(self):
        data = {"a": [1, {"b": "c"}]}
        assert json.loads(to_json(data)) == data
