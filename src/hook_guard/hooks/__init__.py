"""Tool-call hooks for hook-guard.

Hooks sit between the agent and the tools it calls:

- Classifier (which risk categories a call falls into)
- Guards (Nix isolation, expensive DuckDB queries)
- Test cache (skip re-running unchanged test suites)
- Audit log (rotating JSON-lines record of executed operations)

The SDK integration lives in ``hook_guard.hooks.sdk`` so that the command
line hooks do not import the agent SDK.
"""

from hook_guard.hooks.audit import AuditLogger, payload_for
from hook_guard.hooks.cache import ChangeAwareCache, format_elapsed, workspace_key
from hook_guard.hooks.classifier import RULES, RULES_VERSION, Category, CategoryRule, classify
from hook_guard.hooks.dispatcher import (
    EXIT_BLOCK,
    EXIT_OK,
    Dispatcher,
    Evaluation,
    HookResponse,
    format_context,
    tool_succeeded,
)
from hook_guard.hooks.guards import (
    QUERY_RULES,
    EnvironmentIsolationGuard,
    ExpensiveQueryGuard,
    Guard,
    QueryRule,
    default_guards,
)

__all__ = [
    # Audit
    "AuditLogger",
    "payload_for",
    # Cache
    "ChangeAwareCache",
    "format_elapsed",
    "workspace_key",
    # Classifier
    "RULES",
    "RULES_VERSION",
    "Category",
    "CategoryRule",
    "classify",
    # Dispatcher
    "EXIT_BLOCK",
    "EXIT_OK",
    "Dispatcher",
    "Evaluation",
    "HookResponse",
    "format_context",
    "tool_succeeded",
    # Guards
    "QUERY_RULES",
    "EnvironmentIsolationGuard",
    "ExpensiveQueryGuard",
    "Guard",
    "QueryRule",
    "default_guards",
]
