"""``${...}`` placeholder substitution for SQLX templates.

Substitution is a single pass over the template text. Replacement values are
never re-scanned, and the SQL itself is never parsed. Supported expressions::

    ${vars.name}                          project / CLI variable
    ${dataform.projectConfig.vars.name}   same, long form
    ${dataform.projectConfig.defaultSchema}
    ${self()}  ${database()}  ${schema()}  ${name()}
    ${ref("name")}  ${ref("schema", "name")}  ${ref({schema: "s", name: "n"})}
    ${resolve("name")}
    ${when(incremental(), "where ts > 0")}  ${when(incremental(), "a", "b")}

A placeholder ends at the ``}`` matching its ``${``; braces inside quoted
strings and object arguments do not end it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Mapping

import json5

from dform.config import ProjectConfig
from dform.engine.sql_analysis import find_closing_brace

from .models import Action, GraphError, GraphErrorKind, Target

PLACEHOLDER_START = "${"

_VAR_EXPR = re.compile(r"^(?:dataform\.projectConfig\.|projectConfig\.|project\.)?vars\.([A-Za-z_]\w*)$")
_PROJECT_FIELD_EXPR = re.compile(
    r"^(?:dataform\.)?projectConfig\."
    r"(defaultDatabase|defaultSchema|assertionSchema|defaultLocation|warehouse)$"
)
_CALL_EXPR = re.compile(r"^(self|database|schema|name|ref|resolve)\s*\((.*)\)$", re.DOTALL)
_WHEN_EXPR = re.compile(r"^when\s*\(\s*incremental\s*\(\s*\)\s*,(.*)\)$", re.DOTALL)
_STRING_ARG = re.compile(r"""\s*("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')\s*(?:,\s*|$)""", re.DOTALL)

_PROJECT_FIELDS = {
    "defaultDatabase": "default_database",
    "defaultSchema": "default_schema",
    "assertionSchema": "assertion_schema",
    "defaultLocation": "default_location",
    "warehouse": "warehouse",
}
_REF_KEYS = ("database", "schema", "name")


def quote_target(target: Target, warehouse: str = "bigquery") -> str:
    """Render a target as a fully-qualified, quoted identifier for the warehouse."""
    if warehouse == "bigquery":
        return f"`{target.full_name}`"
    return ".".join(f'"{part}"' for part in (target.database, target.schema, target.name))


@dataclass(frozen=True)
class TemplateContext:
    """Everything a template may refer to."""

    file_name: str
    project_config: ProjectConfig
    self_target: Target
    resolve_ref: Callable[[tuple[str, ...]], Action | None]
    incremental: bool = False  # value of incremental() inside when(...)

    @property
    def vars(self) -> Mapping[str, str]:
        return self.project_config.vars


@dataclass
class RenderResult:
    text: str
    dependencies: list[Action] = field(default_factory=list)
    errors: list[GraphError] = field(default_factory=list)


class _PlaceholderError(Exception):
    def __init__(self, message: str, kind: GraphErrorKind) -> None:
        super().__init__(message)
        self.kind = kind


def _unsupported(message: str) -> _PlaceholderError:
    return _PlaceholderError(message, GraphErrorKind.UNSUPPORTED_EXPRESSION)


def _string_args(raw: str) -> tuple[str, ...]:
    raw = raw.strip()
    args = []
    pos = 0
    while pos < len(raw):
        match = _STRING_ARG.match(raw, pos)
        if not match:
            raise _unsupported(f"Expected string arguments, got {raw!r}")
        args.append(json5.loads(match.group(1)))
        pos = match.end()
    return tuple(args)


def _ref_args(raw: str) -> tuple[str, ...]:
    """Arguments of ref()/resolve(): strings, or one ``{database, schema, name}`` object."""
    if not raw.strip().startswith("{"):
        return _string_args(raw)
    try:
        parsed = json5.loads(raw)
    except ValueError as e:
        raise _unsupported(f"Invalid reference object {raw.strip()!r}: {e}") from e
    if not isinstance(parsed, dict) or "name" not in parsed or set(parsed) - set(_REF_KEYS):
        raise _unsupported(
            f"Reference object {raw.strip()!r} must have a name and only database/schema/name keys"
        )
    return tuple(str(parsed[key]) for key in _REF_KEYS if parsed.get(key))


def render(template: str, context: TemplateContext) -> RenderResult:
    """Substitute every placeholder in ``template``.

    Problems are returned as GraphErrors and the offending placeholder is left
    in the text unchanged; rendering never raises for template content.
    """
    result = RenderResult(text="")
    warehouse = context.project_config.warehouse

    def evaluate(expression: str) -> str:
        var_match = _VAR_EXPR.match(expression)
        if var_match:
            var_name = var_match.group(1)
            if var_name not in context.vars:
                raise _PlaceholderError(
                    f"Unknown variable '{var_name}' in {context.file_name}",
                    GraphErrorKind.UNKNOWN_VARIABLE,
                )
            return context.vars[var_name]

        field_match = _PROJECT_FIELD_EXPR.match(expression)
        if field_match:
            return getattr(context.project_config, _PROJECT_FIELDS[field_match.group(1)])

        when_match = _WHEN_EXPR.match(expression)
        if when_match:
            branches = _string_args(when_match.group(1))
            if not 1 <= len(branches) <= 2:
                raise _unsupported("when(incremental(), ...) takes 1 or 2 string branches")
            if context.incremental:
                chosen = branches[0]
            else:
                chosen = branches[1] if len(branches) == 2 else ""
            # Branches are template source, so their own placeholders are rendered
            nested = render(chosen, context)
            result.errors.extend(nested.errors)
            for action in nested.dependencies:
                if action not in result.dependencies:
                    result.dependencies.append(action)
            return nested.text

        call_match = _CALL_EXPR.match(expression)
        if not call_match:
            raise _unsupported(f"Unsupported expression '${{{expression}}}'")
        func = call_match.group(1)

        if func in ("self", "database", "schema", "name"):
            if call_match.group(2).strip():
                raise _unsupported(f"{func}() takes no arguments")
            if func == "self":
                return quote_target(context.self_target, warehouse)
            return getattr(context.self_target, func)

        # ref() / resolve()
        args = _ref_args(call_match.group(2))
        if not 1 <= len(args) <= 3:
            raise _unsupported(f"{func}() takes 1 to 3 arguments")
        action = context.resolve_ref(args)
        if action is None:
            raise _PlaceholderError(
                f"Could not resolve '{'.'.join(args)}' referenced in {context.file_name}",
                GraphErrorKind.UNRESOLVED_REFERENCE,
            )
        if func == "ref" and action not in result.dependencies:
            result.dependencies.append(action)
        return quote_target(action.target, warehouse)

    pieces: list[str] = []
    pos = 0
    while True:
        start = template.find(PLACEHOLDER_START, pos)
        if start == -1:
            break
        end = find_closing_brace(template, start + len(PLACEHOLDER_START), comments=False)
        if end is None:
            result.errors.append(GraphError(
                f"Unterminated placeholder starting at offset {start} in {context.file_name}",
                context.file_name,
                GraphErrorKind.UNSUPPORTED_EXPRESSION,
            ))
            break
        pieces.append(template[pos:start])
        expression = template[start + len(PLACEHOLDER_START):end].strip()
        try:
            pieces.append(evaluate(expression))
        except _PlaceholderError as e:
            result.errors.append(GraphError(str(e), context.file_name, e.kind))
            pieces.append(template[start:end + 1])
        pos = end + 1
    pieces.append(template[pos:])

    result.text = "".join(pieces)
    return result
