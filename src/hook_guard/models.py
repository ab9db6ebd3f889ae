"""Data model shared by the hook pipeline.

Events come in from the agent runtime, guards return decision records,
the cache persists entries and the audit logger writes log lines.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

PRE_TOOL_USE = "PreToolUse"
POST_TOOL_USE = "PostToolUse"

# Keys of tool_input that carry the literal payload, in lookup order
COMMAND_KEYS = ("command", "query", "code")


class MalformedEventError(ValueError):
    """Raised when a runtime payload cannot be turned into an event."""

    pass


class Verdict(StrEnum):
    """Outcome of guard evaluation."""

    ALLOW = "allow"
    ASK = "ask"
    BLOCK = "block"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def most_restrictive(cls, *verdicts: Verdict) -> Verdict:
        """Return the strongest verdict (block > ask > allow)."""
        return max(verdicts, key=lambda v: v.severity, default=cls.ALLOW)


_SEVERITY = {Verdict.ALLOW: 0, Verdict.ASK: 1, Verdict.BLOCK: 2}


class RunResult(StrEnum):
    """State of the last cached test/check run."""

    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ToolInvocationEvent:
    """One proposed (or completed) tool call from the agent runtime."""

    tool_name: str
    command_text: str = ""
    working_directory: str = ""
    session_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    hook_event_name: str = PRE_TOOL_USE
    tool_input: Mapping[str, Any] = field(default_factory=dict)
    tool_response: Any = None

    @classmethod
    def from_payload(cls, payload: Any) -> ToolInvocationEvent:
        """Build an event from the runtime's hook JSON.

        Args:
            payload: Decoded JSON object sent by the runtime.

        Returns:
            The parsed event.

        Raises:
            MalformedEventError: If required fields are missing or mistyped.
        """
        if not isinstance(payload, Mapping):
            raise MalformedEventError(f"Expected a JSON object, got {type(payload).__name__}")

        tool_name = payload.get("tool_name")
        if not isinstance(tool_name, str) or not tool_name.strip():
            raise MalformedEventError("Missing tool_name")

        tool_input = payload.get("tool_input") or {}
        if not isinstance(tool_input, Mapping):
            raise MalformedEventError("tool_input must be an object")

        command_text = ""
        for key in COMMAND_KEYS:
            value = tool_input.get(key)
            if isinstance(value, str) and value:
                command_text = value
                break

        cwd = payload.get("cwd")
        session_id = payload.get("session_id")
        hook_event_name = payload.get("hook_event_name")

        return cls(
            tool_name=tool_name,
            command_text=command_text,
            working_directory=cwd if isinstance(cwd, str) else "",
            session_id=session_id if isinstance(session_id, str) else "",
            hook_event_name=hook_event_name if isinstance(hook_event_name, str) else PRE_TOOL_USE,
            tool_input=dict(tool_input),
            tool_response=payload.get("tool_response"),
        )


@dataclass(frozen=True)
class DecisionRecord:
    """The verdict a guard (or the merged pipeline) returns."""

    verdict: Verdict
    reason_lines: tuple[str, ...] = ()
    event_name: str = PRE_TOOL_USE

    def __post_init__(self) -> None:
        if self.verdict is Verdict.ALLOW and self.reason_lines:
            raise ValueError("An allow decision carries no reason lines")
        if self.verdict is not Verdict.ALLOW and not self.reason_lines:
            raise ValueError(f"A {self.verdict} decision needs at least one reason line")

    @classmethod
    def allow(cls, event_name: str = PRE_TOOL_USE) -> DecisionRecord:
        return cls(Verdict.ALLOW, (), event_name)

    @classmethod
    def ask(cls, *reason_lines: str, event_name: str = PRE_TOOL_USE) -> DecisionRecord:
        return cls(Verdict.ASK, tuple(reason_lines), event_name)

    @classmethod
    def block(cls, *reason_lines: str, event_name: str = PRE_TOOL_USE) -> DecisionRecord:
        return cls(Verdict.BLOCK, tuple(reason_lines), event_name)

    @classmethod
    def merge(
        cls, records: Iterable[DecisionRecord], event_name: str = PRE_TOOL_USE
    ) -> DecisionRecord:
        """Escalate to the most restrictive verdict, keeping reasons in order."""
        records = list(records)
        verdict = Verdict.most_restrictive(*(r.verdict for r in records))
        if verdict is Verdict.ALLOW:
            return cls.allow(event_name)
        lines = tuple(line for r in records for line in r.reason_lines)
        return cls(verdict, lines, event_name)

    @property
    def is_allow(self) -> bool:
        return self.verdict is Verdict.ALLOW


@dataclass(frozen=True)
class GuardResult:
    """What one guard said about one event.

    A ``None`` decision means "no opinion": the guard did not apply or could
    not evaluate the event. That is kept apart from an evaluated allow.
    """

    guard: str
    decision: DecisionRecord | None = None
    error: str | None = None

    @classmethod
    def judged(cls, guard: str, decision: DecisionRecord) -> GuardResult:
        return cls(guard=guard, decision=decision)

    @classmethod
    def no_opinion(cls, guard: str, error: str | None = None) -> GuardResult:
        return cls(guard=guard, decision=None, error=error)

    @property
    def has_opinion(self) -> bool:
        return self.decision is not None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class CacheEntry:
    """Memorized test/check result for one workspace."""

    workspace_key: str
    workspace: str
    last_source_mtime: float
    last_run_time: float
    last_result: RunResult = RunResult.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_result"] = str(self.last_result)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CacheEntry:
        """Parse a stored entry.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed.
        """
        return cls(
            workspace_key=str(data["workspace_key"]),
            workspace=str(data.get("workspace", "")),
            last_source_mtime=float(data["last_source_mtime"]),
            last_run_time=float(data["last_run_time"]),
            last_result=RunResult(data.get("last_result", RunResult.UNKNOWN)),
        )


@dataclass
class AuditLogLine:
    """A single audit log record."""

    timestamp: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    working_directory: str = ""
    session_id: str = ""

    def to_json(self) -> str:
        """Convert to a single-line JSON string."""
        return json.dumps(asdict(self), default=str, separators=(",", ":"))

    @classmethod
    def from_json(cls, line: str) -> AuditLogLine:
        data = json.loads(line)
        return cls(
            timestamp=data["timestamp"],
            type=data["type"],
            payload=data.get("payload", {}),
            working_directory=data.get("working_directory", ""),
            session_id=data.get("session_id", ""),
        )
