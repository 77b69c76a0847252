"""Exception classes for fatal dform errors.

Non-fatal compilation problems are not exceptions: they are collected as
``GraphError`` records on the compiled graph (see ``dform.engine.graph.models``).
"""

from __future__ import annotations


class DformError(Exception):
    """Base exception for all fatal dform errors."""


class ConfigError(DformError):
    """Raised when project configuration is invalid or missing."""


class ConfigConflictError(ConfigError):
    """Raised when mutually exclusive version declaration sources coexist."""


class MissingVersionError(ConfigError):
    """Raised when no core version declaration can be found."""


class UnresolvedDependencyError(ConfigError):
    """Raised when the declared core package is not installed."""


class GraphCompilationError(DformError):
    """Raised when a run plan is requested for a graph that failed to compile."""

    def __init__(self, message: str, errors: list | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []
