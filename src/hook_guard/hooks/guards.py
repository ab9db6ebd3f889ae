"""Guard policies.

Each guard turns (event, category tags, environment snapshot) into a
DecisionRecord. Guards fail open: if a guard cannot evaluate an event it
reports "no opinion" instead of blocking unrelated work.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import override

from hook_guard.hooks.classifier import Category
from hook_guard.log import log
from hook_guard.models import DecisionRecord, GuardResult, ToolInvocationEvent

# Values of the isolation variable that mean "inside the Nix shell"
ISOLATION_VALUES = frozenset({"1", "pure", "impure"})


class Guard(ABC):
    """A policy evaluating one risk dimension of a tool invocation."""

    name: str = "guard"

    @abstractmethod
    def applies(self, tags: frozenset[Category]) -> bool:
        """Whether this guard has anything to say about these categories."""
        ...

    @abstractmethod
    def evaluate(
        self,
        event: ToolInvocationEvent,
        tags: frozenset[Category],
        env: Mapping[str, str],
    ) -> DecisionRecord:
        """Judge an event this guard applies to."""
        ...

    def check(
        self,
        event: ToolInvocationEvent,
        tags: frozenset[Category],
        env: Mapping[str, str],
    ) -> GuardResult:
        """Run the guard, turning any failure into "no opinion"."""
        try:
            if not self.applies(tags):
                return GuardResult.no_opinion(self.name)
            return GuardResult.judged(self.name, self.evaluate(event, tags, env))
        except Exception as e:  # noqa: BLE001
            tool_name = getattr(event, "tool_name", "?")
            log.warn(f"Guard {self.name} failed on {tool_name!r}, allowing: {e!r}")
            return GuardResult.no_opinion(self.name, error=repr(e))


class EnvironmentIsolationGuard(Guard):
    """Asks before running R outside the reproducible Nix shell."""

    name = "nix"

    def __init__(self, variable: str = "IN_NIX_SHELL", strict: bool = False):
        self.variable = variable
        self.strict = strict

    @override
    def applies(self, tags: frozenset[Category]) -> bool:
        return Category.R_INTERPRETER in tags

    def is_isolated(self, env: Mapping[str, str]) -> bool:
        value = env.get(self.variable) or ""
        return value.strip().lower() in ISOLATION_VALUES

    @override
    def evaluate(
        self,
        event: ToolInvocationEvent,
        tags: frozenset[Category],
        env: Mapping[str, str],
    ) -> DecisionRecord:
        if self.is_isolated(env):
            return DecisionRecord.allow()

        problem = (
            f"R is being run outside the Nix shell ({self.variable} is not set): "
            "no environment isolation, package versions may not match default.nix."
        )
        if self.strict:
            return DecisionRecord.block(
                problem,
                "Enter the project environment first: `nix-shell default.nix` (or `./default.sh`).",
                "Then rerun the command from inside that shell.",
            )
        return DecisionRecord.ask(
            problem,
            "Run it inside `nix-shell default.nix` (or `./default.sh`) for reproducible results.",
        )


@dataclass(frozen=True)
class QueryRule:
    """A costly query shape, and the clause that makes it safe."""

    name: str
    pattern: re.Pattern[str]
    safety_clause: re.Pattern[str]
    message: str

    def reason(self, query: str) -> str | None:
        if self.pattern.search(query) and not self.safety_clause.search(query):
            return self.message
        return None


_LIMIT = re.compile(r"\blimit\s+\d+", re.IGNORECASE)
_WHERE = re.compile(r"\bwhere\b", re.IGNORECASE)

QUERY_RULES: tuple[QueryRule, ...] = (
    QueryRule(
        "select-star",
        re.compile(r"\bselect\s+\*", re.IGNORECASE),
        _LIMIT,
        "SELECT * without LIMIT will load entire dataset into memory. "
        "Select only the columns you need or add LIMIT n.",
    ),
    QueryRule(
        "order-by",
        re.compile(r"\border\s+by\b", re.IGNORECASE),
        _LIMIT,
        "ORDER BY without LIMIT sorts the full table. Add LIMIT n if you only need the top rows.",
    ),
    QueryRule(
        "cross-join",
        re.compile(r"\bcross\s+join\b", re.IGNORECASE),
        _WHERE,
        "CROSS JOIN without WHERE builds the full cartesian product. Add a join condition.",
    ),
    QueryRule(
        "glob-scan",
        re.compile(r"\bread_(?:csv|parquet|json)\w*\s*\(\s*['\"][^'\"]*\*", re.IGNORECASE),
        _LIMIT,
        "Reading a file glob without LIMIT scans every matching file. "
        "Narrow the glob or add LIMIT n while exploring.",
    ),
)


class ExpensiveQueryGuard(Guard):
    """Asks before DuckDB queries that scan or materialize whole tables."""

    name = "duckdb"

    def __init__(self, rules: tuple[QueryRule, ...] = QUERY_RULES):
        self.rules = rules

    @override
    def applies(self, tags: frozenset[Category]) -> bool:
        return Category.DUCKDB_QUERY in tags

    def reasons(self, query: str) -> list[str]:
        """Reason lines for every rule the query trips, in table order."""
        return [reason for rule in self.rules if (reason := rule.reason(query)) is not None]

    @override
    def evaluate(
        self,
        event: ToolInvocationEvent,
        tags: frozenset[Category],
        env: Mapping[str, str],
    ) -> DecisionRecord:
        reasons = self.reasons(event.command_text)
        if not reasons:
            return DecisionRecord.allow()
        return DecisionRecord.ask(*reasons)


def default_guards(variable: str = "IN_NIX_SHELL", strict: bool = False) -> list[Guard]:
    """Guards in registration order."""
    return [
        EnvironmentIsolationGuard(variable=variable, strict=strict),
        ExpensiveQueryGuard(),
    ]
