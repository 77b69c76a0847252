"""Definition discovery and loading.

Convention: every ``definitions/**/*.sqlx`` file is one action. The file stem
is the action name unless the config block sets ``name``::

    config { type: "table", tags: ["daily"] }
    select 1 as ${vars.column_name}
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dform.engine.sql_analysis import ConfigBlockError, split_config_block

from .models import ActionType

DEFINITIONS_DIR = "definitions"
SQLX_SUFFIX = ".sqlx"

# Dataset and table names: letters, digits, underscores and dashes.
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")


class DefinitionError(ValueError):
    """A single definition file could not be loaded."""


class DefinitionConfig(BaseModel):
    """The config block of a definition file."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: ActionType = ActionType.TABLE
    name: str | None = None
    schema_name: str | None = Field(default=None, alias="schema")
    database: str | None = None
    tags: list[str] = Field(default_factory=list)
    disabled: bool = False
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)
    hermetic: bool | None = None


@dataclass
class Definition:
    """A loaded definition: parsed config plus the raw SQL template."""

    file_name: str  # relative to the project root, e.g. "definitions/example.sqlx"
    name: str
    config: DefinitionConfig
    template: str


def discover_definitions(project_dir: Path) -> list[Path]:
    """Return all definition files in file-discovery order (sorted relative paths)."""
    definitions_dir = Path(project_dir) / DEFINITIONS_DIR
    if not definitions_dir.exists():
        return []
    return sorted(
        (p for p in definitions_dir.rglob(f"*{SQLX_SUFFIX}") if p.is_file()),
        key=lambda p: p.relative_to(definitions_dir).as_posix(),
    )


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err["loc"]) or "config"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def _check_identifier(value: str, label: str) -> None:
    # Names end up inside quoted statement text
    if not _IDENTIFIER_RE.match(value):
        raise DefinitionError(f"Invalid {label}: {value!r} (must match [A-Za-z_][A-Za-z0-9_-]*)")


def load_definition(path: Path, project_dir: Path) -> Definition:
    """Read one definition file and parse its config block.

    Raises:
        DefinitionError: the file is unreadable or its config block is malformed.
    """
    file_name = path.relative_to(project_dir).as_posix()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DefinitionError(f"Could not read file: {e}") from e

    try:
        raw_config, template = split_config_block(text)
    except ConfigBlockError as e:
        raise DefinitionError(str(e)) from e

    try:
        config = DefinitionConfig.model_validate(raw_config)
    except ValidationError as e:
        raise DefinitionError(f"Invalid config: {_format_validation_error(e)}") from e

    name = config.name or path.stem
    _check_identifier(name, "action name")
    if config.schema_name:
        _check_identifier(config.schema_name, "schema")

    if config.type == ActionType.DECLARATION and template.strip():
        raise DefinitionError("Declarations cannot contain a query")

    return Definition(file_name=file_name, name=name, config=config, template=template)
