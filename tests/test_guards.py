"""Tests for guard policies."""

from typing import override

import pytest

from hook_guard.hooks.classifier import Category, classify
from hook_guard.hooks.guards import (
    QUERY_RULES,
    EnvironmentIsolationGuard,
    ExpensiveQueryGuard,
    Guard,
    default_guards,
)
from hook_guard.models import DecisionRecord, ToolInvocationEvent, Verdict


def _bash(command: str) -> ToolInvocationEvent:
    return ToolInvocationEvent(tool_name="Bash", command_text=command, working_directory="/w")


class TestEnvironmentIsolationGuard:
    """Tests for the Nix shell guard."""

    def test_asks_outside_nix_shell(self):
        """R outside the Nix shell gets an ask with remediation."""
        event = _bash("Rscript script.R")
        result = EnvironmentIsolationGuard().check(event, classify(event), {})

        assert result.decision is not None
        assert result.decision.verdict is Verdict.ASK
        assert "IN_NIX_SHELL" in result.decision.reason_lines[0]
        assert any("nix-shell" in line for line in result.decision.reason_lines)

    @pytest.mark.parametrize("value", ["1", "pure", "impure", "IMPURE", " impure "])
    def test_allows_inside_nix_shell(self, value):
        """Any accepted isolation value allows with no reasons."""
        event = _bash("Rscript script.R")
        result = EnvironmentIsolationGuard().check(event, classify(event), {"IN_NIX_SHELL": value})

        assert result.decision == DecisionRecord.allow()

    @pytest.mark.parametrize("value", ["", "0", "yes", "true"])
    def test_unaccepted_values_ask(self, value):
        """Values outside the accepted set do not count as isolated."""
        event = _bash("Rscript script.R")
        result = EnvironmentIsolationGuard().check(event, classify(event), {"IN_NIX_SHELL": value})

        assert result.decision.verdict is Verdict.ASK

    def test_strict_mode_blocks(self):
        """Strict isolation escalates to block with remediation steps."""
        event = _bash("R -e 'devtools::load_all()'")
        guard = EnvironmentIsolationGuard(strict=True)
        result = guard.check(event, classify(event), {})

        assert result.decision.verdict is Verdict.BLOCK
        assert len(result.decision.reason_lines) >= 2

    def test_custom_variable(self):
        """The isolation variable name is configurable."""
        event = _bash("Rscript x.R")
        guard = EnvironmentIsolationGuard(variable="MY_SHELL")
        result = guard.check(event, classify(event), {"MY_SHELL": "1"})

        assert result.decision.is_allow

    def test_no_opinion_for_non_r_commands(self):
        """The guard only applies to R invocations."""
        event = _bash("ls -la")
        result = EnvironmentIsolationGuard().check(event, classify(event), {})

        assert result.has_opinion is False


class TestExpensiveQueryGuard:
    """Tests for the DuckDB query guard."""

    def test_select_star_without_limit(self):
        """SELECT * without LIMIT warns about loading the entire dataset."""
        event = _bash('duckdb usage.duckdb "SELECT * FROM daily_usage"')
        result = ExpensiveQueryGuard().check(event, classify(event), {})

        assert result.decision.verdict is Verdict.ASK
        assert any("load entire dataset" in line for line in result.decision.reason_lines)

    def test_select_star_with_limit(self):
        """A row-limiting clause removes the warning."""
        event = _bash('duckdb usage.duckdb "SELECT * FROM daily_usage LIMIT 10"')
        result = ExpensiveQueryGuard().check(event, classify(event), {})

        assert result.decision.is_allow

    def test_selective_query_allowed(self):
        """A column selection with a filter is fine."""
        event = _bash("duckdb usage.duckdb \"SELECT date, cost FROM daily_usage WHERE date > '2025-01-01'\"")
        result = ExpensiveQueryGuard().check(event, classify(event), {})

        assert result.decision == DecisionRecord.allow()

    def test_multiple_reasons_concatenated_in_table_order(self):
        """Each matched sub-pattern contributes one line, in rule order."""
        query = "duckdb db \"SELECT * FROM a CROSS JOIN b ORDER BY a.x\""
        event = _bash(query)
        guard = ExpensiveQueryGuard()
        result = guard.check(event, classify(event), {})

        expected = [r.message for r in QUERY_RULES if r.name in ("select-star", "order-by", "cross-join")]
        assert list(result.decision.reason_lines) == expected

    def test_each_rule_contributes_at_most_once(self):
        """Repeating a pattern does not repeat its reason."""
        guard = ExpensiveQueryGuard()
        reasons = guard.reasons("SELECT * FROM a UNION ALL SELECT * FROM b")

        assert len(reasons) == 1

    def test_glob_scan(self):
        """Reading a file glob without LIMIT warns."""
        reasons = ExpensiveQueryGuard().reasons("SELECT count(*) FROM read_parquet('data/*.parquet')")

        assert len(reasons) == 1
        assert "glob" in reasons[0]

    def test_structured_duckdb_tool(self):
        """Structured DuckDB tools are inspected through their query."""
        event = ToolInvocationEvent(tool_name="mcp__duckdb__query", command_text="select * from t")
        result = ExpensiveQueryGuard().check(event, classify(event), {})

        assert result.decision.verdict is Verdict.ASK

    def test_no_opinion_without_duckdb(self):
        """Plain SQL text without duckdb is not this guard's business."""
        event = _bash("psql -c 'SELECT * FROM t'")
        result = ExpensiveQueryGuard().check(event, classify(event), {})

        assert result.has_opinion is False


class ExplodingGuard(Guard):
    """A guard whose evaluation always fails."""

    name = "exploding"

    @override
    def applies(self, tags):
        return True

    @override
    def evaluate(self, event, tags, env):
        raise RuntimeError("boom")


class TestFailOpen:
    """Guards never raise; failures become no opinion."""

    def test_exception_becomes_no_opinion(self):
        """An exception inside evaluate is reported, not raised."""
        result = ExplodingGuard().check(_bash("ls"), frozenset({Category.SHELL}), {})

        assert result.has_opinion is False
        assert result.failed is True
        assert "boom" in result.error

    def test_malformed_event_fails_open(self):
        """A malformed event degrades to no opinion."""
        broken = ToolInvocationEvent(tool_name="Bash", command_text=None)  # type: ignore[arg-type]
        result = ExpensiveQueryGuard().check(broken, frozenset({Category.DUCKDB_QUERY}), {})

        assert result.has_opinion is False
        assert result.failed is True

    def test_malformed_environment_fails_open(self):
        """An environment snapshot that is not a mapping does not raise."""
        event = _bash("Rscript x.R")
        result = EnvironmentIsolationGuard().check(event, classify(event), None)  # type: ignore[arg-type]

        assert result.has_opinion is False

    def test_non_event_fails_open(self):
        """Something that is not an event at all still degrades to no opinion."""
        result = ExpensiveQueryGuard().check(object(), frozenset({Category.DUCKDB_QUERY}), {})  # type: ignore[arg-type]

        assert result.has_opinion is False
        assert result.failed is True


def test_default_guards_order():
    """Guards are registered nix first, then duckdb."""
    assert [g.name for g in default_guards()] == ["nix", "duckdb"]
