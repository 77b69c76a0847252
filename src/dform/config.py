"""Project configuration: workflow_settings.yaml / dataform.json parsing and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dform.engine.errors import ConfigError

WORKFLOW_SETTINGS_FILE = "workflow_settings.yaml"
LEGACY_SETTINGS_FILE = "dataform.json"

DEFAULT_DATASET = "dataform"
DEFAULT_ASSERTION_DATASET = "dataform_assertions"


def _stringify_mapping(value: Any) -> Any:
    """YAML and JSON may load var values as numbers or booleans; vars are always strings."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    return value


class ProjectConfig(BaseModel):
    """Resolved project defaults for a single compile invocation."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    warehouse: str = "bigquery"
    default_database: str = ""
    default_schema: str = DEFAULT_DATASET
    assertion_schema: str = DEFAULT_ASSERTION_DATASET
    default_location: str = ""
    schema_suffix: str | None = None
    vars: dict[str, str] = Field(default_factory=dict)

    def with_overrides(self, overrides: ProjectConfigOverride | None) -> ProjectConfig:
        """Return a copy with CLI-level overrides applied. CLI vars win over declared vars."""
        if overrides is None:
            return self
        updates: dict[str, Any] = {"vars": {**self.vars, **overrides.vars}}
        if overrides.default_database:
            updates["default_database"] = overrides.default_database
        if overrides.default_location:
            updates["default_location"] = overrides.default_location
        if overrides.schema_suffix:
            updates["schema_suffix"] = overrides.schema_suffix
        return self.model_copy(update=updates)


class ProjectConfigOverride(BaseModel):
    """Overrides supplied on the command line (--vars, --schema-suffix, ...)."""
    model_config = ConfigDict(extra="ignore")

    default_database: str | None = None
    default_location: str | None = None
    schema_suffix: str | None = None
    vars: dict[str, str] = Field(default_factory=dict)


class WorkflowSettings(BaseModel):
    """Contents of workflow_settings.yaml."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    dataform_core_version: str | None = Field(default=None, alias="dataformCoreVersion")
    default_project: str = Field(alias="defaultProject")
    default_location: str = Field(default="", alias="defaultLocation")
    default_dataset: str = Field(default=DEFAULT_DATASET, alias="defaultDataset")
    default_assertion_dataset: str = Field(
        default=DEFAULT_ASSERTION_DATASET, alias="defaultAssertionDataset"
    )
    vars: dict[str, str] = Field(default_factory=dict)

    @field_validator("dataform_core_version", mode="before")
    @classmethod
    def _version_as_string(cls, value: Any) -> Any:
        # "3.0" in YAML loads as a float
        return str(value) if isinstance(value, (int, float)) else value

    @field_validator("vars", mode="before")
    @classmethod
    def _vars_as_strings(cls, value: Any) -> Any:
        return _stringify_mapping(value)

    def to_project_config(self) -> ProjectConfig:
        return ProjectConfig(
            warehouse="bigquery",
            default_database=self.default_project,
            default_schema=self.default_dataset,
            assertion_schema=self.default_assertion_dataset,
            default_location=self.default_location,
            vars=self.vars,
        )

    def to_yaml(self) -> str:
        data = self.model_dump(by_alias=True, exclude_none=True)
        if not data.get("defaultLocation"):
            data.pop("defaultLocation", None)
        if not data.get("vars"):
            data.pop("vars", None)
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


class LegacyProjectSettings(BaseModel):
    """Contents of the legacy dataform.json, used alongside a package.json."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    warehouse: str = "bigquery"
    default_database: str = Field(default="", alias="defaultDatabase")
    default_schema: str = Field(default=DEFAULT_DATASET, alias="defaultSchema")
    assertion_schema: str = Field(default=DEFAULT_ASSERTION_DATASET, alias="assertionSchema")
    default_location: str = Field(default="", alias="defaultLocation")
    vars: dict[str, str] = Field(default_factory=dict)

    @field_validator("vars", mode="before")
    @classmethod
    def _vars_as_strings(cls, value: Any) -> Any:
        return _stringify_mapping(value)

    def to_project_config(self) -> ProjectConfig:
        return ProjectConfig(
            warehouse=self.warehouse,
            default_database=self.default_database,
            default_schema=self.default_schema,
            assertion_schema=self.assertion_schema,
            default_location=self.default_location,
            vars=self.vars,
        )


def parse_vars(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` as given to --vars."""
    if not raw:
        return {}
    parsed: dict[str, str] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        if "=" not in pair:
            raise ValueError(f"Invalid variable {pair!r}: expected key=value")
        key, value = pair.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Invalid variable {pair!r}: empty name")
        parsed[key] = value.strip()
    return parsed


def load_workflow_settings(project_dir: Path) -> WorkflowSettings | None:
    """Load workflow_settings.yaml, or None if the project has none."""
    path = Path(project_dir) / WORKFLOW_SETTINGS_FILE
    if not path.exists():
        return None
    try:
        raw = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {WORKFLOW_SETTINGS_FILE}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{WORKFLOW_SETTINGS_FILE} must contain a mapping")
    try:
        return WorkflowSettings.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid {WORKFLOW_SETTINGS_FILE}: {e}") from e


def load_legacy_settings(project_dir: Path) -> LegacyProjectSettings | None:
    """Load dataform.json, or None if the project has none."""
    path = Path(project_dir) / LEGACY_SETTINGS_FILE
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {LEGACY_SETTINGS_FILE}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{LEGACY_SETTINGS_FILE} must contain an object")
    try:
        return LegacyProjectSettings.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid {LEGACY_SETTINGS_FILE}: {e}") from e
