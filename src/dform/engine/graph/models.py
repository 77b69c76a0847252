"""Data classes for compiled graphs and run plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from dform.config import ProjectConfig


class ActionType(str, Enum):
    TABLE = "table"
    VIEW = "view"
    INCREMENTAL = "incremental"
    ASSERTION = "assertion"
    OPERATIONS = "operations"
    DECLARATION = "declaration"

    @property
    def is_table_like(self) -> bool:
        return self in (ActionType.TABLE, ActionType.VIEW, ActionType.INCREMENTAL)


class Hermeticity(str, Enum):
    HERMETIC = "HERMETIC"
    NON_HERMETIC = "NON_HERMETIC"


class GraphErrorKind(str, Enum):
    FILE_PARSE = "file_parse"
    UNKNOWN_VARIABLE = "unknown_variable"
    DUPLICATE_TARGET = "duplicate_target"
    UNRESOLVED_REFERENCE = "unresolved_reference"
    CIRCULAR_DEPENDENCY = "circular_dependency"
    UNSUPPORTED_EXPRESSION = "unsupported_expression"


@dataclass(frozen=True)
class Target:
    """A warehouse location: database (project), schema (dataset), name."""

    database: str
    schema: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.schema}.{self.name}"


@dataclass(frozen=True)
class GraphError:
    """A non-fatal compilation problem, scoped to a file when one is known."""

    message: str
    file_name: str | None = None
    kind: GraphErrorKind = GraphErrorKind.FILE_PARSE


@dataclass
class Action:
    """A single compiled unit of work."""

    type: ActionType
    canonical_target: Target
    target: Target
    file_name: str
    query: str = ""
    incremental_query: str = ""  # incremental actions only: query with incremental() true
    tags: list[str] = field(default_factory=list)
    disabled: bool = False
    description: str = ""
    dependency_targets: list[Target] = field(default_factory=list)
    hermetic: bool | None = None  # explicit override from the config block

    @property
    def name(self) -> str:
        return self.canonical_target.name


@dataclass
class CompiledGraph:
    """Result of compiling a project: actions in file-discovery order plus errors."""

    actions: list[Action]
    project_config: ProjectConfig
    graph_errors: list[GraphError] = field(default_factory=list)
    dataform_core_version: str = ""

    @property
    def targets(self) -> list[Target]:
        return [a.canonical_target for a in self.actions]

    @property
    def tables(self) -> list[Action]:
        return [a for a in self.actions if a.type.is_table_like]

    @property
    def assertions(self) -> list[Action]:
        return [a for a in self.actions if a.type == ActionType.ASSERTION]

    @property
    def operations(self) -> list[Action]:
        return [a for a in self.actions if a.type == ActionType.OPERATIONS]

    @property
    def declarations(self) -> list[Action]:
        return [a for a in self.actions if a.type == ActionType.DECLARATION]

    def find(self, name: str) -> Action | None:
        """Look up an action by ``name``, ``schema.name`` or ``database.schema.name``.

        Matches canonical targets first, then runtime targets. A bare name that
        matches more than one action is ambiguous and returns None.
        """
        parts = tuple(name.split("."))
        for attr in ("canonical_target", "target"):
            matches = [a for a in self.actions if _matches(getattr(a, attr), parts)]
            if len(matches) == 1:
                return matches[0]
        return None


def _matches(target: Target, parts: tuple[str, ...]) -> bool:
    full = (target.database, target.schema, target.name)
    return len(parts) <= 3 and full[-len(parts):] == parts


@dataclass
class RunConfig:
    """Selection and mode for a run plan."""

    full_refresh: bool = False
    tags: list[str] = field(default_factory=list)
    actions: list[str] | None = None
    include_dependencies: bool = False
    allow_graph_errors: bool = False

    def __post_init__(self) -> None:
        # Tags act as a set; keep first-seen order for echoing back.
        self.tags = list(dict.fromkeys(self.tags))


@dataclass(frozen=True)
class Task:
    """A single statement an executor sends to the warehouse."""

    statement: str
    type: str = "statement"  # "statement" or "assertion"


@dataclass
class ActionExecution:
    """Executable form of one action."""

    target: Target
    file_name: str
    type: ActionType
    hermeticity: Hermeticity
    tasks: list[Task] = field(default_factory=list)

    @property
    def table_type(self) -> str | None:
        return self.type.value if self.type.is_table_like else None


@dataclass
class ExecutionGraph:
    """Ordered run plan. ``warehouse_state`` is filled in by an external executor only."""

    actions: list[ActionExecution]
    project_config: ProjectConfig
    run_config: RunConfig
    warehouse_state: dict = field(default_factory=dict)
