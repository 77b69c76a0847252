"""Tests for SQLX text analysis: config blocks, statement splitting, table refs."""

from __future__ import annotations

import textwrap

import pytest

from dform.engine.sql_analysis import (
    ConfigBlockError,
    _fallback_extract_table_refs,
    extract_table_refs,
    find_config_block,
    parse_config_body,
    split_config_block,
    split_statements,
)


# ===========================================================================
# Config blocks
# ===========================================================================


class TestConfigBlock:
    def test_split(self):
        text = 'config { type: "table", tags: ["someTag"] }\n\nselect 1 as x\n'
        config, template = split_config_block(text)
        assert config == {"type": "table", "tags": ["someTag"]}
        assert template == "\n\nselect 1 as x\n"

    def test_no_block(self):
        config, template = split_config_block("select 1\n")
        assert config == {}
        assert template == "select 1\n"

    def test_multiline_block(self):
        text = textwrap.dedent("""\
            config {
              type: "view",
              schema: "reporting",
              description: "Daily totals"
            }
            select 1
        """)
        config, template = split_config_block(text)
        assert config == {"type": "view", "schema": "reporting", "description": "Daily totals"}
        assert template.strip() == "select 1"

    def test_braces_inside_strings(self):
        text = 'config { description: "uses } and {" }\nselect 1'
        config, _ = split_config_block(text)
        assert config == {"description": "uses } and {"}

    def test_nested_object(self):
        block = find_config_block('config { a: { b: 1 } } select 1')
        assert block is not None
        assert block[3] == len("config { a: { b: 1 } }")

    def test_unterminated(self):
        with pytest.raises(ConfigBlockError, match="Unterminated"):
            split_config_block('config { type: "table"\nselect 1')

    def test_invalid_body(self):
        with pytest.raises(ConfigBlockError, match="Invalid config block"):
            parse_config_body('type: "table", tags: [')

    def test_empty_body(self):
        assert parse_config_body("  ") == {}

    def test_word_config_inside_identifier_is_ignored(self):
        config, template = split_config_block("select myconfig {x} from t")
        assert config == {}

    def test_compact_form(self):
        config, template = split_config_block('config {type:"view",tags:["a","b"]}\nselect 1')
        assert config == {"type": "view", "tags": ["a", "b"]}
        assert template == "\nselect 1"

    def test_comments(self):
        text = textwrap.dedent("""\
            config {
              type: "view", // a view, not a {table}
              /* the owning team's tag */
              tags: ['daily'],
            }
            select 1
        """)
        config, template = split_config_block(text)
        assert config == {"type": "view", "tags": ["daily"]}
        assert template.strip() == "select 1"

    def test_unterminated_comment(self):
        with pytest.raises(ConfigBlockError, match="Unterminated"):
            split_config_block('config { type: "view" /* never closed }\nselect 1')

    def test_not_an_object(self):
        with pytest.raises(ConfigBlockError, match="Invalid config block"):
            parse_config_body("1, 2")


# ===========================================================================
# Statement splitting
# ===========================================================================


class TestSplitStatements:
    def test_separator_lines(self):
        sql = "delete from a\n---\ninsert into a values (1)\n  ---  \nselect 1\n"
        assert split_statements(sql) == ["delete from a", "insert into a values (1)", "select 1"]

    def test_single(self):
        assert split_statements("\nselect 1\n") == ["select 1"]

    def test_empty_statements_dropped(self):
        assert split_statements("---\n\n---\nselect 1") == ["select 1"]

    def test_dashes_in_comment_are_not_separators(self):
        assert split_statements("select 1 --- trailing") == ["select 1 --- trailing"]


# ===========================================================================
# extract_table_refs
# ===========================================================================


class TestExtractTableRefs:
    def test_qualified_backticks(self):
        refs = extract_table_refs("select * from `proj.dataset.orders`")
        assert refs == [("proj", "dataset", "orders")]

    def test_join(self):
        sql = "select * from `p.d.a` as a join `p.d.b` as b on a.id = b.id"
        assert extract_table_refs(sql) == [("p", "d", "a"), ("p", "d", "b")]

    def test_cte_skipped(self):
        sql = "with recent as (select * from `p.d.events`) select * from recent"
        assert extract_table_refs(sql) == [("p", "d", "events")]

    def test_lowercased(self):
        assert extract_table_refs("select * from Sales.Orders") == [("sales", "orders")]

    def test_no_tables(self):
        assert extract_table_refs("select 1 as x") == []

    def test_other_dialect(self):
        refs = extract_table_refs('select * from "db"."schema"."t"', dialect="postgres")
        assert refs == [("db", "schema", "t")]

    def test_regex_fallback(self):
        refs = _fallback_extract_table_refs("select * from `p.d.t` -- from ignored.x\njoin p.d.u on 1")
        assert refs == [("p", "d", "t"), ("p", "d", "u")]
