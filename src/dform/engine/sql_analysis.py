"""SQLX text analysis.

Provides the config-block parser used when loading definitions, statement
splitting for operations, and sqlglot-based table reference extraction used
to decide whether an action is hermetic.
"""

from __future__ import annotations

import re
from typing import Any

import json5
import sqlglot
from sqlglot import exp

# --- Config block (``config { type: "table", tags: ["a"] }``) ---

CONFIG_BLOCK_START = re.compile(r"\bconfig\s*\{")
STATEMENT_SEPARATOR = re.compile(r"^\s*---\s*$", re.MULTILINE)


class ConfigBlockError(ValueError):
    """Raised when a config block cannot be located or parsed."""


def find_closing_brace(text: str, start: int, comments: bool = True) -> int | None:
    """Return the index of the ``}`` closing a brace opened just before ``start``.

    Quoted strings are skipped, and so are ``//`` and ``/* */`` comments when
    ``comments`` is set. Returns None when the brace is never closed.
    """
    depth = 1
    quote: str | None = None
    i = start
    while i < len(text):
        char = text[i]
        if quote:
            if char == "\\":
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in ("'", '"', "`"):
            quote = char
        elif comments and text.startswith("//", i):
            newline = text.find("\n", i)
            i = len(text) if newline == -1 else newline
            continue
        elif comments and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                return None
            i = end + 2
            continue
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def find_config_block(text: str) -> tuple[int, int, int, int] | None:
    """Locate the config block.

    Returns ``(block_start, body_start, body_end, block_end)`` offsets, where the
    body is the text between the braces, or None when the file has no block.
    """
    match = CONFIG_BLOCK_START.search(text)
    if not match:
        return None

    body_start = match.end()
    body_end = find_closing_brace(text, body_start)
    if body_end is None:
        raise ConfigBlockError("Unterminated config block: missing closing '}'")
    return match.start(), body_start, body_end, body_end + 1


def parse_config_body(body: str) -> dict[str, Any]:
    """Parse the inside of a config block.

    The body is a JavaScript object literal: unquoted keys, single or double
    quoted strings, trailing commas and comments are all accepted.
    """
    try:
        parsed = json5.loads("{" + body + "}")
    except ValueError as e:
        raise ConfigBlockError(f"Invalid config block: {e}") from e
    if not isinstance(parsed, dict):
        raise ConfigBlockError("Config block must be an object")
    return parsed


def split_config_block(text: str) -> tuple[dict[str, Any], str]:
    """Return ``(config, template)``; the template is the text with the block removed."""
    block = find_config_block(text)
    if block is None:
        return {}, text
    block_start, body_start, body_end, block_end = block
    config = parse_config_body(text[body_start:body_end])
    return config, text[:block_start] + text[block_end:]


def split_statements(sql: str) -> list[str]:
    """Split an operations file on ``---`` separator lines, dropping empty statements."""
    return [s.strip() for s in STATEMENT_SEPARATOR.split(sql) if s.strip()]


# --- Table reference extraction ---


def _normalize_parts(*parts: str) -> tuple[str, ...]:
    # BigQuery allows `project.dataset.table` as one quoted identifier
    joined = ".".join(p for p in parts if p)
    return tuple(p.lower() for p in joined.split(".") if p)


def extract_table_refs(sql: str, dialect: str | None = "bigquery") -> list[tuple[str, ...]]:
    """Extract table references from SQL using the sqlglot AST.

    CTE names are skipped. Each reference is returned as a lowercased tuple of
    its qualified parts, e.g. ``("project", "dataset", "table")``.
    """
    try:
        expressions = sqlglot.parse(sql, read=dialect)
    except (sqlglot.errors.ParseError, sqlglot.errors.TokenError):
        return _fallback_extract_table_refs(sql)

    refs: set[tuple[str, ...]] = set()
    for parsed in expressions:
        if parsed is None:
            continue
        cte_names = {(cte.alias or "").lower() for cte in parsed.find_all(exp.CTE)}
        for table in parsed.find_all(exp.Table):
            parts = _normalize_parts(table.catalog, table.db, table.name)
            if not parts:
                continue
            if len(parts) == 1 and parts[0] in cte_names:
                continue
            refs.add(parts)
    return sorted(refs)


# Regex fallback for when sqlglot cannot parse the query
_SQL_FROM_REF_PATTERN = re.compile(
    r"\b(?:FROM|JOIN)\s+(`[^`]+`|\"[^\"]+\"(?:\.\"[^\"]+\")*|[A-Za-z_][\w\-]*(?:\.[A-Za-z_][\w\-]*)*)",
    re.IGNORECASE,
)


def _fallback_extract_table_refs(sql: str) -> list[tuple[str, ...]]:
    """Regex fallback for extracting table refs when sqlglot fails."""
    clean = re.sub(r"--[^\n]*", "", sql)
    refs: set[tuple[str, ...]] = set()
    for match in _SQL_FROM_REF_PATTERN.finditer(clean):
        raw = match.group(1).replace("`", "").replace('"', "")
        parts = _normalize_parts(raw)
        if parts:
            refs.add(parts)
    return sorted(refs)
