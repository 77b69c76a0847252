"""Core version resolution.

A project declares the core version it compiles against in exactly one of two
places, and the two modes never mix:

    workflow_settings.yaml   dataformCoreVersion: 3.0.0
    package.json             {"dependencies": {"@dataform/core": "3.0.0"}}

In workflow-settings mode any npm artifact in the project is a conflict. In
package-manifest mode the declared package must also be installed under
``node_modules``; the installed copy's version is authoritative.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from dform.config import (
    LEGACY_SETTINGS_FILE,
    WORKFLOW_SETTINGS_FILE,
    ProjectConfig,
    load_legacy_settings,
    load_workflow_settings,
)
from dform.engine.errors import (
    ConfigConflictError,
    ConfigError,
    MissingVersionError,
    UnresolvedDependencyError,
)

logger = logging.getLogger("dform.settings")

CORE_PACKAGE_NAME = "@dataform/core"
PACKAGE_MANIFEST_FILE = "package.json"
PACKAGE_LOCK_FILE = "package-lock.json"
INSTALLED_PACKAGES_DIR = "node_modules"

# Checked in this order, so the first offending artifact is the one reported
NPM_ARTIFACTS = (PACKAGE_MANIFEST_FILE, PACKAGE_LOCK_FILE, INSTALLED_PACKAGES_DIR)


@dataclass(frozen=True)
class WorkflowSettingsMode:
    """Version declared by ``dataformCoreVersion`` in workflow_settings.yaml."""

    version: str
    settings_path: Path


@dataclass(frozen=True)
class PackageManifestMode:
    """Version declared as an npm dependency and resolved from the installed copy."""

    version: str
    declared_version: str
    manifest_path: Path
    installed_path: Path


CoreVersionSource = Union[WorkflowSettingsMode, PackageManifestMode]


def _read_json(path: Path) -> dict:
    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain an object")
    return raw


def _declared_core_version(manifest_path: Path) -> str | None:
    manifest = _read_json(manifest_path)
    dependencies = manifest.get("dependencies") or {}
    if not isinstance(dependencies, dict):
        raise ConfigError(f"'dependencies' in {manifest_path} must be an object")
    version = dependencies.get(CORE_PACKAGE_NAME)
    return str(version) if version else None


def installed_core_path(project_dir: Path) -> Path:
    return Path(project_dir) / INSTALLED_PACKAGES_DIR / CORE_PACKAGE_NAME / PACKAGE_MANIFEST_FILE


def resolve_core_version(project_dir: Path) -> CoreVersionSource:
    """Determine the single authoritative core version declaration for a project.

    Raises:
        ConfigConflictError: dataformCoreVersion is set and npm artifacts exist.
        UnresolvedDependencyError: package.json declares the core package but it is not installed.
        MissingVersionError: neither source declares a version.
    """
    project_dir = Path(project_dir)
    settings = load_workflow_settings(project_dir)

    if settings is not None and settings.dataform_core_version:
        for artifact in NPM_ARTIFACTS:
            artifact_path = project_dir / artifact
            if artifact_path.exists():
                raise ConfigConflictError(
                    f"'{artifact_path}' unexpected; remove it and try again"
                )
        logger.debug("Core version %s from %s", settings.dataform_core_version, WORKFLOW_SETTINGS_FILE)
        return WorkflowSettingsMode(
            version=settings.dataform_core_version,
            settings_path=project_dir / WORKFLOW_SETTINGS_FILE,
        )

    manifest_path = project_dir / PACKAGE_MANIFEST_FILE
    if manifest_path.exists():
        declared = _declared_core_version(manifest_path)
        if declared:
            installed_path = installed_core_path(project_dir)
            if not installed_path.exists():
                raise UnresolvedDependencyError(
                    f"Could not find a recent installed version of {CORE_PACKAGE_NAME} in the "
                    f"project. Check that either `dataformCoreVersion` is specified in "
                    f"`{WORKFLOW_SETTINGS_FILE}`, or `{CORE_PACKAGE_NAME}` is specified in "
                    f"`{PACKAGE_MANIFEST_FILE}`. If using `{PACKAGE_MANIFEST_FILE}`, then run "
                    f"`dform install`."
                )
            installed = _read_json(installed_path)
            version = str(installed.get("version") or declared)
            logger.debug("Core version %s from %s", version, installed_path)
            return PackageManifestMode(
                version=version,
                declared_version=declared,
                manifest_path=manifest_path,
                installed_path=installed_path,
            )

    raise MissingVersionError(
        f"dataformCoreVersion must be specified either in {WORKFLOW_SETTINGS_FILE} or via a "
        f"{PACKAGE_MANIFEST_FILE}"
    )


def load_project_config(project_dir: Path, source: CoreVersionSource) -> ProjectConfig:
    """Read project defaults for the resolved mode.

    workflow_settings.yaml always wins; package-manifest projects may still use
    the legacy dataform.json instead.
    """
    project_dir = Path(project_dir)
    settings = load_workflow_settings(project_dir)
    if settings is not None:
        return settings.to_project_config()
    if isinstance(source, PackageManifestMode):
        legacy = load_legacy_settings(project_dir)
        if legacy is not None:
            return legacy.to_project_config()
    raise ConfigError(
        f"No {WORKFLOW_SETTINGS_FILE} or {LEGACY_SETTINGS_FILE} found in {project_dir}"
    )


def check_installable(project_dir: Path) -> Path:
    """Validate that npm installation applies to this project; return the manifest path."""
    project_dir = Path(project_dir)
    settings = load_workflow_settings(project_dir)
    if settings is not None and settings.dataform_core_version:
        raise ConfigConflictError(
            f"Package installation is only supported when specifying {CORE_PACKAGE_NAME} "
            f"version in '{PACKAGE_MANIFEST_FILE}'"
        )
    manifest_path = project_dir / PACKAGE_MANIFEST_FILE
    if not manifest_path.exists():
        raise ConfigError(f"No {PACKAGE_MANIFEST_FILE} found in {project_dir}")
    return manifest_path
