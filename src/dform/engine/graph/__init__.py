"""SQLX graph compiler and run planner.

Loads ``definitions/**/*.sqlx``, renders their templates, builds a graph of
actions keyed by canonical target, and turns that graph into an ordered run
plan of SQL statements.

This package re-exports all public symbols:
    from dform.engine.graph import compile_graph, build_run_plan, RunConfig, ...
"""

from __future__ import annotations

# Data models
from .models import (
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
)

# Loading
from .discovery import (
    Definition,
    DefinitionConfig,
    DefinitionError,
    discover_definitions,
    load_definition,
)

# Templates
from .templating import (
    TemplateContext,
    quote_target,
    render,
)

# Compilation
from .compiler import (
    compile_graph,
    compute_targets,
)

# Planning
from .planning import (
    build_run_plan,
    build_tasks,
    compute_hermeticity,
    order_actions,
    select_actions,
)

# Serialization
from .reporting import (
    compiled_graph_to_dict,
    execution_graph_to_dict,
    to_json,
)

__all__ = [
    # Models
    "Action",
    "ActionExecution",
    "ActionType",
    "CompiledGraph",
    "ExecutionGraph",
    "GraphError",
    "GraphErrorKind",
    "Hermeticity",
    "RunConfig",
    "Target",
    "Task",
    # Loading
    "Definition",
    "DefinitionConfig",
    "DefinitionError",
    "discover_definitions",
    "load_definition",
    # Templates
    "TemplateContext",
    "quote_target",
    "render",
    # Compilation
    "compile_graph",
    "compute_targets",
    # Planning
    "build_run_plan",
    "build_tasks",
    "compute_hermeticity",
    "order_actions",
    "select_actions",
    # Serialization
    "compiled_graph_to_dict",
    "execution_graph_to_dict",
    "to_json",
]
