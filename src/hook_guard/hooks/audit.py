"""Audit log for executed operations.

Appends one JSON line per operation to a single active log file. Once the
file grows past a size threshold it is renamed with a date suffix and
gzip-compressed, and a new active file starts with the next record.

Writes never raise: the audit trail must not get in the way of the tool
call it describes.

Appenders from several sessions share a flock on a sidecar lock file;
rotation takes it exclusively only for the rename, so no append can land
in a file that has already been moved aside.
"""

import fcntl
import gzip
import os
import re
import shutil
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from hook_guard.hooks.classifier import (
    Category,
    git_subcommand,
    issue_action,
    package_build_operation,
)
from hook_guard.log import log
from hook_guard.models import AuditLogLine, ToolInvocationEvent

PREVIEW_CHARS = 200
SENSITIVE_KEYS = ("token", "password", "secret", "api_key", "auth")
_ROTATED_SUFFIX = re.compile(r"-(\d{8}-\d{6})(?:-(\d+))?\.")


def _rotation_order(path: Path) -> tuple[str, int]:
    match = _ROTATED_SUFFIX.search(path.name)
    if match is None:
        return (path.name, 0)
    return (match.group(1), int(match.group(2) or 0))


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    """Truncate a command for logging."""
    return text if len(text) <= limit else text[:limit] + "..."


def payload_for(
    event: ToolInvocationEvent, tags: frozenset[Category], success: bool
) -> tuple[str, dict[str, Any]]:
    """Pick the audit category and payload fields for a completed call.

    Returns:
        Tuple of (category, payload).
    """
    command = event.command_text
    base: dict[str, Any] = {"tool_name": event.tool_name}

    if Category.PACKAGE_BUILD in tags:
        operation, scope = package_build_operation(command)
        return "package_build", {**base, "operation": operation, "scope": scope, "success": success}
    if Category.DUCKDB_QUERY in tags:
        return "duckdb", {**base, "query": preview(command), "success": success}
    if Category.VERSION_CONTROL in tags:
        return "git", {
            **base,
            "subcommand": git_subcommand(command),
            "command": preview(command),
            "success": success,
        }
    if Category.ISSUE_TRACKER in tags:
        return "issue", {
            **base,
            "action": issue_action(command),
            "command": preview(command),
            "success": success,
        }
    if Category.SHELL in tags:
        return "shell", {**base, "command": preview(command), "success": success}
    return "tool", {**base, "success": success}


class AuditLogger:
    """Append-only JSON-lines log with size-based, dated rotation.

    Usage:
        audit = AuditLogger(Path("~/.cache/hook-guard/logs").expanduser())
        audit.append("shell", {"command": "ls"}, session_id="abc")
    """

    def __init__(
        self,
        log_dir: Path,
        max_bytes: int = 10_000_000,
        filename: str = "audit.jsonl",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize the audit logger.

        Args:
            log_dir: Directory for the active log and its rotated siblings.
            max_bytes: Size above which the active log is rotated.
            filename: Name of the active log file.
            clock: Source of aware datetimes for timestamps and suffixes.
        """
        self.log_dir = Path(log_dir)
        self.max_bytes = max_bytes
        self.filename = filename
        self.clock = clock

    @property
    def path(self) -> Path:
        return self.log_dir / self.filename

    @property
    def lock_path(self) -> Path:
        return self.log_dir / f"{self.filename}.lock"

    @contextmanager
    def _locked(self, operation: int) -> Iterator[None]:
        fd = os.open(self.lock_path, os.O_WRONLY | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, operation)
            yield
        finally:
            os.close(fd)  # releases the lock

    @property
    def _stem(self) -> str:
        return Path(self.filename).stem

    @property
    def _suffix(self) -> str:
        return Path(self.filename).suffix

    def _sanitize(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Redact sensitive fields and truncate long values."""
        sanitized: dict[str, Any] = {}
        for key, value in payload.items():
            if any(s in key.lower() for s in SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, str):
                sanitized[key] = preview(value)
            else:
                sanitized[key] = value
        return sanitized

    def append(
        self,
        category: str,
        payload: dict[str, Any],
        *,
        working_directory: str = "",
        session_id: str = "",
    ) -> None:
        """Append one record; failures are reported and swallowed.

        Args:
            category: Record type tag (e.g. "package_build", "shell").
            payload: Category-specific detail.
            working_directory: Where the operation ran.
            session_id: Runtime session that ran it.
        """
        record = AuditLogLine(
            timestamp=self.clock().isoformat(),
            type=category,
            payload=self._sanitize(payload),
            working_directory=working_directory,
            session_id=session_id,
        )
        data = (record.to_json() + "\n").encode("utf-8")

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed()
            with self._locked(fcntl.LOCK_SH):
                fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
                try:
                    os.write(fd, data)
                finally:
                    os.close(fd)
        except OSError as e:
            log.warn(f"Audit log write failed ({self.path}): {e!r}")

    def _rotate_if_needed(self) -> None:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return
        if size > self.max_bytes:
            self.rotate(threshold=self.max_bytes)

    def _rotated_name(self) -> Path:
        stamp = self.clock().strftime("%Y%m%d-%H%M%S")
        base = f"{self._stem}-{stamp}"
        candidate = self.log_dir / f"{base}{self._suffix}"
        counter = 1
        while candidate.exists() or candidate.with_name(candidate.name + ".gz").exists():
            candidate = self.log_dir / f"{base}-{counter}{self._suffix}"
            counter += 1
        return candidate

    def rotate(self, threshold: int | None = None) -> Path | None:
        """Move the active log aside and compress it.

        Args:
            threshold: If given, only rotate when the active log is still
                larger than this once the lock is held.

        Returns:
            Path of the rotated file (compressed if compression worked),
            or None if the active log was not renamed.
        """
        try:
            with self._locked(fcntl.LOCK_EX):
                if threshold is not None and self.path.stat().st_size <= threshold:
                    return None  # another session rotated it first
                target = self._rotated_name()
                os.rename(self.path, target)
        except FileNotFoundError:
            return None  # another session rotated it first
        except OSError as e:
            log.warn(f"Audit log rotation failed, will retry: {e!r}")
            return None

        compressed = target.with_name(target.name + ".gz")
        try:
            with open(target, "rb") as src, gzip.open(compressed, "wb") as dst:
                shutil.copyfileobj(src, dst)
            target.unlink()
        except OSError as e:
            log.warn(f"Could not compress {target}, leaving it uncompressed: {e!r}")
            compressed.unlink(missing_ok=True)
            return target
        return compressed

    def rotated_files(self) -> list[Path]:
        """Rotated siblings, oldest first (by date suffix)."""
        pattern = f"{self._stem}-*{self._suffix}*"
        return sorted((p for p in self.log_dir.glob(pattern) if p != self.path), key=_rotation_order)

    def read_lines(self, include_rotated: bool = False) -> list[AuditLogLine]:
        """Parse logged records in insertion order."""
        files = self.rotated_files() if include_rotated else []
        if self.path.exists():
            files.append(self.path)

        records: list[AuditLogLine] = []
        for path in files:
            opener = gzip.open if path.suffix == ".gz" else open
            with opener(path, "rt", encoding="utf-8") as f:
                records.extend(AuditLogLine.from_json(line) for line in f if line.strip())
        return records
