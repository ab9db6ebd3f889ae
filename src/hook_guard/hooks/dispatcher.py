"""Dispatcher: the single entry point for pre- and post-tool hooks.

Before a tool runs, the dispatcher classifies the call, runs every
registered guard in order, checks the test cache and merges the results
into one decision. After the tool ran, it updates the cache and appends
to the audit log.
"""

import os
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hook_guard.config import Settings
from hook_guard.hooks.audit import AuditLogger, payload_for
from hook_guard.hooks.cache import ChangeAwareCache
from hook_guard.hooks.classifier import Category, classify
from hook_guard.hooks.guards import Guard, default_guards
from hook_guard.log import log
from hook_guard.models import (
    POST_TOOL_USE,
    PRE_TOOL_USE,
    DecisionRecord,
    GuardResult,
    MalformedEventError,
    RunResult,
    ToolInvocationEvent,
    Verdict,
)

EXIT_OK = 0
EXIT_BLOCK = 2

CACHE_GUARD_NAME = "test-cache"

BANNERS = {
    Verdict.ASK: "⚠️  HOOK WARNING",
    Verdict.BLOCK: "⛔ BLOCKED BY HOOK",
}
ASK_PROMPT = "Proceed anyway? (yes/no)"

# testthat reporter summary, e.g. "[ FAIL 2 | WARN 0 | SKIP 1 | PASS 40 ]"
TESTTHAT_SUMMARY = re.compile(r"\[\s*FAIL\s+(?P<fail>\d+)\s*\|")


@dataclass(frozen=True)
class Evaluation:
    """Everything the pre-tool pipeline worked out for one event."""

    event: ToolInvocationEvent
    tags: frozenset[Category]
    results: tuple[GuardResult, ...]
    decision: DecisionRecord

    @property
    def fired(self) -> list[GuardResult]:
        """Guards that returned something other than allow."""
        return [r for r in self.results if r.decision is not None and not r.decision.is_allow]

    @property
    def errors(self) -> list[GuardResult]:
        return [r for r in self.results if r.failed]


def format_context(decision: DecisionRecord) -> str:
    """Render reasons as banner, bullets and (for ask) a yes/no prompt."""
    lines = [BANNERS.get(decision.verdict, str(decision.verdict).upper())]
    lines.extend(f"- {reason}" for reason in decision.reason_lines)
    if decision.verdict is Verdict.ASK:
        lines.append(ASK_PROMPT)
    return "\n".join(lines)


@dataclass(frozen=True)
class HookResponse:
    """What the pre-tool hook hands back to the runtime."""

    decision: DecisionRecord
    output: dict[str, Any] | None = None
    exit_code: int = EXIT_OK

    @classmethod
    def from_decision(cls, decision: DecisionRecord) -> "HookResponse":
        if decision.is_allow:
            return cls(decision)
        output = {
            "hookSpecificOutput": {
                "hookEventName": decision.event_name,
                "permissionDecision": str(decision.verdict),
                "additionalContext": format_context(decision),
            }
        }
        exit_code = EXIT_BLOCK if decision.verdict is Verdict.BLOCK else EXIT_OK
        return cls(decision, output, exit_code)


def tool_succeeded(event: ToolInvocationEvent) -> bool:
    """Infer from the post-tool response whether the call succeeded.

    Looks at explicit success/error flags, exit codes and interruption,
    then at a testthat summary in the output. Missing information counts
    as success.
    """
    response = event.tool_response
    text = ""
    if isinstance(response, Mapping):
        if response.get("success") is False or response.get("is_error") or response.get("isError"):
            return False
        if response.get("interrupted"):
            return False
        exit_code = response.get("exit_code", response.get("exitCode"))
        if isinstance(exit_code, int) and exit_code != 0:
            return False
        text = f"{response.get('stdout') or ''}\n{response.get('stderr') or ''}"
    elif isinstance(response, str):
        text = response

    match = TESTTHAT_SUMMARY.search(text)
    if match is not None and int(match.group("fail")) > 0:
        return False
    return True


def _is_absolute(path: str) -> bool:
    return bool(path) and os.path.isabs(path)


class Dispatcher:
    """Runs the hook pipeline for one runtime.

    Usage:
        dispatcher = Dispatcher(Settings())
        decision = dispatcher.evaluate_pre(event)
        ...  # runtime executes the tool unless blocked
        dispatcher.record_post(event, success=True)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        guards: Sequence[Guard] | None = None,
        cache: ChangeAwareCache | None = None,
        audit: AuditLogger | None = None,
        env: Mapping[str, str] | None = None,
    ):
        """Initialize the dispatcher.

        Args:
            settings: Configuration; read from the environment if omitted.
            guards: Guards in registration order (default: nix, duckdb).
            cache: Test cache (default: one under settings.cache_dir).
            audit: Audit logger (default: one under settings.log_dir).
            env: Environment snapshot for guards (default: os.environ at call time).
        """
        self.settings = settings or Settings()
        self.guards = list(
            guards
            if guards is not None
            else default_guards(self.settings.isolation_var, self.settings.strict_isolation)
        )
        self.cache = cache or ChangeAwareCache(self.settings.cache_dir, self.settings.tracked_dirs)
        self.audit = audit or AuditLogger(self.settings.log_dir, self.settings.log_max_bytes)
        self.env = env

    def _env_snapshot(self) -> Mapping[str, str]:
        return dict(os.environ) if self.env is None else self.env

    def _check_cache(self, event: ToolInvocationEvent, tags: frozenset[Category]) -> GuardResult:
        if Category.TEST_RUN not in tags or not _is_absolute(event.working_directory):
            return GuardResult.no_opinion(CACHE_GUARD_NAME)
        try:
            warning = self.cache.should_warn_cache_hit(Path(event.working_directory))
        except Exception as e:  # noqa: BLE001
            log.warn(f"Test cache check failed, allowing: {e!r}")
            return GuardResult.no_opinion(CACHE_GUARD_NAME, error=repr(e))
        return GuardResult.judged(CACHE_GUARD_NAME, warning or DecisionRecord.allow())

    def evaluate(self, event: ToolInvocationEvent) -> Evaluation:
        """Classify, guard and merge; never raises."""
        tags = classify(event)
        env = self._env_snapshot()

        results = [guard.check(event, tags, env) for guard in self.guards]
        decision = DecisionRecord.merge(r.decision for r in results if r.decision is not None)

        # A blocked call never runs, so it must not mark the cache as running
        if decision.verdict is Verdict.BLOCK:
            results.append(GuardResult.no_opinion(CACHE_GUARD_NAME))
        else:
            results.append(self._check_cache(event, tags))
            decision = DecisionRecord.merge(r.decision for r in results if r.decision is not None)
        for result in results:
            if result.failed:
                log.debug(f"{result.guard} had no opinion on {event.tool_name}: {result.error}")

        return Evaluation(event, tags, tuple(results), decision)

    def evaluate_pre(self, event: ToolInvocationEvent) -> DecisionRecord:
        """Merged pre-execution decision for an event.

        A ``block`` stops the tool; an ``ask`` is relayed to the runtime,
        which asks the user. With ``enforce_block`` disabled, blocks are
        downgraded to asks.
        """
        evaluation = self.evaluate(event)
        decision = evaluation.decision

        if decision.verdict is Verdict.BLOCK and not self.settings.enforce_block:
            decision = DecisionRecord(Verdict.ASK, decision.reason_lines, decision.event_name)

        if not decision.is_allow:
            self.audit.append(
                "guard",
                {
                    "tool_name": event.tool_name,
                    "verdict": str(decision.verdict),
                    "reasons": list(decision.reason_lines),
                    "guards": [r.guard for r in evaluation.fired],
                },
                working_directory=event.working_directory,
                session_id=event.session_id,
            )
        return decision

    def record_post(self, event: ToolInvocationEvent, success: bool) -> None:
        """Record a completed tool call in the cache and the audit log."""
        tags = classify(event)

        if Category.TEST_RUN in tags and _is_absolute(event.working_directory):
            result = RunResult.PASSED if success else RunResult.FAILED
            self.cache.record_result(Path(event.working_directory), result)

        category, payload = payload_for(event, tags, success)
        self.audit.append(
            category,
            payload,
            working_directory=event.working_directory,
            session_id=event.session_id,
        )

    def handle_pre(self, payload: Any) -> HookResponse:
        """Run the pre-tool pipeline on a raw runtime payload."""
        try:
            event = ToolInvocationEvent.from_payload(payload)
        except MalformedEventError as e:
            log.debug(f"Malformed pre-tool payload, allowing: {e}")
            return HookResponse(DecisionRecord.allow(PRE_TOOL_USE))
        return HookResponse.from_decision(self.evaluate_pre(event))

    def handle_post(self, payload: Any) -> None:
        """Run the post-tool recording on a raw runtime payload."""
        try:
            event = ToolInvocationEvent.from_payload(payload)
        except MalformedEventError as e:
            log.debug(f"Malformed post-tool payload, ignoring: {e}")
            return
        if event.hook_event_name != POST_TOOL_USE:
            log.debug(f"Post hook received {event.hook_event_name!r} event")
        self.record_post(event, tool_succeeded(event))
