"""Command classifier.

Maps a tool invocation to the set of risk categories it belongs to. The
rules live in one table so that guards can be tested without the
dispatcher, and so that adding a category is a one-line change.
"""

import re
from dataclasses import dataclass
from enum import StrEnum

from hook_guard.models import ToolInvocationEvent

# Bump when RULES changes in a way that alters classification
RULES_VERSION = 2

# Generic "run a shell command" tools; only these are inspected for sub-patterns
SHELL_TOOLS = frozenset({"Bash"})


class Category(StrEnum):
    """Risk categories a tool invocation can fall into."""

    SHELL = "shell"
    R_INTERPRETER = "r_interpreter"
    PACKAGE_BUILD = "package_build"
    TEST_RUN = "test_run"
    DUCKDB_QUERY = "duckdb_query"
    VERSION_CONTROL = "version_control"
    ISSUE_TRACKER = "issue_tracker"
    STRUCTURED_TOOL = "structured_tool"


def _p(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# Start of a command: beginning of text or after a shell separator
_CMD_START = r"(?:^|[\s;&|(`])"

# Command position proper: start of text or a separator, then optional
# wrappers (env, nix develop -c, ...) and an optional directory prefix
_CMD_POSITION = (
    r"(?:^|[\n;&|(`])\s*"
    r"(?:(?:env|exec|time|command|nix\s+develop\s+-c|nix-shell\s+--run)\s+['\"]?)*"
    r"(?:[\w.~/-]*/)?"
)

# The bare R binary is case-sensitive; `r` alone is too common a word
R_INTERPRETER_PATTERN = re.compile(
    _CMD_POSITION + r"(?:(?i:Rscript)\b|R(?=\s+(?:-e|-f|-q|--\w[\w-]*|CMD)\b|\s*$|\s*[;&|)<]))"
)
PACKAGE_BUILD_PATTERN = _p(
    r"\bdevtools::|\btestthat::|\brcmdcheck::|\bpkgdown::|\bR\s+CMD\s+(?:check|build|INSTALL)\b"
)
TEST_RUN_PATTERN = _p(
    r"\bdevtools::(?:test|check)\b|\btestthat::test_\w+|\bR\s+CMD\s+check\b|\brcmdcheck::rcmdcheck\b"
)
DUCKDB_PATTERN = _p(r"\bduckdb\b")
SQL_SELECT_PATTERN = _p(r"\bselect\b")
GIT_PATTERN = _p(_CMD_START + r"git\s+(?P<sub>[a-z][\w-]*)")
ISSUE_PATTERN = _p(_CMD_START + r"gh\s+(?P<kind>issue|pr)\b(?:\s+(?P<action>[a-z][\w-]*))?")

PACKAGE_OPERATION_PATTERN = _p(
    r"\b(?:devtools|rcmdcheck|testthat|pkgdown)::(?P<fn>\w+)|\bR\s+CMD\s+(?P<cmd>check|build|INSTALL)\b"
)
FILTER_PATTERN = _p(r"filter\s*=\s*['\"](?P<filter>[^'\"]+)['\"]")


@dataclass(frozen=True)
class CategoryRule:
    """One row of the classification table.

    A rule matches when the tool name is in scope and every pattern is
    found in the command text. Shell-scoped rules inspect the command;
    structured rules match the tool name by exact name or prefix.
    """

    category: Category
    tool_names: frozenset[str] = SHELL_TOOLS
    tool_prefixes: tuple[str, ...] = ()
    patterns: tuple[re.Pattern[str], ...] = ()

    def matches(self, tool_name: str, command_text: str) -> bool:
        if self.tool_prefixes:
            return tool_name in self.tool_names or tool_name.startswith(self.tool_prefixes)
        if tool_name not in self.tool_names:
            return False
        return all(p.search(command_text) for p in self.patterns)


R_TOOL_PREFIXES = ("mcp__r-btw__", "mcp__btw__")
DUCKDB_TOOL_PREFIXES = ("mcp__duckdb__",)

RULES: tuple[CategoryRule, ...] = (
    CategoryRule(Category.SHELL),
    CategoryRule(Category.R_INTERPRETER, patterns=(R_INTERPRETER_PATTERN,)),
    CategoryRule(Category.PACKAGE_BUILD, patterns=(PACKAGE_BUILD_PATTERN,)),
    CategoryRule(Category.TEST_RUN, patterns=(TEST_RUN_PATTERN,)),
    CategoryRule(Category.DUCKDB_QUERY, patterns=(DUCKDB_PATTERN, SQL_SELECT_PATTERN)),
    CategoryRule(Category.VERSION_CONTROL, patterns=(GIT_PATTERN,)),
    CategoryRule(Category.ISSUE_TRACKER, patterns=(ISSUE_PATTERN,)),
    # Structured tools exposed by MCP servers
    CategoryRule(Category.R_INTERPRETER, frozenset(), R_TOOL_PREFIXES),
    CategoryRule(Category.STRUCTURED_TOOL, frozenset(), R_TOOL_PREFIXES),
    CategoryRule(Category.DUCKDB_QUERY, frozenset(), DUCKDB_TOOL_PREFIXES),
    CategoryRule(Category.STRUCTURED_TOOL, frozenset(), DUCKDB_TOOL_PREFIXES),
)


def classify(event: ToolInvocationEvent) -> frozenset[Category]:
    """Return the categories an invocation belongs to.

    Args:
        event: The tool invocation to classify.

    Returns:
        Set of matching categories; empty when nothing matches.
    """
    tool_name = getattr(event, "tool_name", None)
    command = getattr(event, "command_text", None)
    if not isinstance(command, str):
        command = ""
    if not isinstance(tool_name, str) or not tool_name:
        return frozenset()

    return frozenset(rule.category for rule in RULES if rule.matches(tool_name, command))


def package_build_operation(command: str) -> tuple[str, str]:
    """Extract (operation, scope) from a package-build command.

    Examples:
        >>> package_build_operation("devtools::test(filter = 'cache')")
        ('test', 'cache')
        >>> package_build_operation("R CMD check pkg.tar.gz")
        ('check', 'all')
    """
    match = PACKAGE_OPERATION_PATTERN.search(command or "")
    if match is None:
        operation = "unknown"
    elif match.group("fn"):
        operation = match.group("fn")
    else:
        operation = match.group("cmd").lower()

    filter_match = FILTER_PATTERN.search(command or "")
    scope = filter_match.group("filter") if filter_match else "all"
    return operation, scope


def git_subcommand(command: str) -> str:
    match = GIT_PATTERN.search(command or "")
    return match.group("sub").lower() if match else "unknown"


def issue_action(command: str) -> str:
    """Return e.g. ``issue create`` or ``pr view`` for a gh command."""
    match = ISSUE_PATTERN.search(command or "")
    if match is None:
        return "unknown"
    kind = match.group("kind").lower()
    action = (match.group("action") or "list").lower()
    return f"{kind} {action}"
