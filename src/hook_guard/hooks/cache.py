"""Change-aware test cache.

Remembers the last test/check run per workspace together with the newest
modification time seen under the tracked subtrees. When nothing changed
since that run, the agent is reminded before running the same suite again.

The cache is advisory: every failure is treated as a cache miss.
"""

import hashlib
import json
import os
import tempfile
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from hook_guard.log import log
from hook_guard.models import CacheEntry, DecisionRecord, RunResult


def workspace_key(workspace: str | Path) -> str:
    """Stable short hash of the absolute workspace path."""
    absolute = os.path.abspath(os.fspath(workspace))
    return hashlib.sha256(absolute.encode("utf-8")).hexdigest()[:16]


def format_elapsed(seconds: float) -> str:
    """Human-readable duration, e.g. ``5 minutes``.

    Examples:
        >>> format_elapsed(42)
        '42 seconds'
        >>> format_elapsed(7200)
        '2 hours'
    """
    seconds = max(0, int(seconds))
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"


class ChangeAwareCache:
    """Per-workspace record of the last test run, one JSON file each."""

    def __init__(
        self,
        cache_dir: Path,
        tracked_dirs: Iterable[str] = ("R", "tests"),
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            cache_dir: Directory holding one ``<key>.json`` file per workspace.
            tracked_dirs: Subtrees (relative to the workspace) whose files are watched.
            clock: Source of wall-clock time, in epoch seconds.
        """
        self.cache_dir = Path(cache_dir)
        self.tracked_dirs = tuple(tracked_dirs)
        self.clock = clock

    def path_for(self, workspace: str | Path) -> Path:
        return self.cache_dir / f"{workspace_key(workspace)}.json"

    def source_mtime(self, workspace: str | Path) -> float:
        """Newest mtime across tracked files; missing subtrees count as 0."""
        newest = 0.0
        root = Path(workspace)
        for name in self.tracked_dirs:
            subtree = root / name
            if not subtree.is_dir():
                continue
            for path in subtree.rglob("*"):
                try:
                    if path.is_file():
                        newest = max(newest, path.stat().st_mtime)
                except OSError:
                    continue  # vanished while walking
        return newest

    def read(self, workspace: str | Path) -> CacheEntry | None:
        """Load the stored entry, or None on any read/parse failure."""
        path = self.path_for(workspace)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.debug(f"Ignoring unreadable cache file {path}: {e!r}")
            return None

    def write(self, entry: CacheEntry) -> None:
        """Atomically replace the workspace's cache file."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target = self.cache_dir / f"{entry.workspace_key}.json"
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry.to_dict(), f)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def should_warn_cache_hit(self, workspace: str | Path) -> DecisionRecord | None:
        """Warn when the tracked sources are unchanged since the last run.

        On a miss (first run, or changed sources) a fresh ``running`` entry
        is written and None is returned.

        Args:
            workspace: Absolute path of the package being tested.

        Returns:
            An ``ask`` decision on a cache hit, else None.
        """
        try:
            current_mtime = self.source_mtime(workspace)
            entry = self.read(workspace)
            now = self.clock()

            if entry is not None and current_mtime <= entry.last_source_mtime:
                elapsed = format_elapsed(now - entry.last_run_time)
                dirs = ", ".join(f"{d}/" for d in self.tracked_dirs)
                return DecisionRecord.ask(
                    f"Tests already ran {elapsed} ago (last result: {entry.last_result}) "
                    f"and no files in {dirs} have changed since.",
                    "Re-running will most likely give the same result.",
                )

            self.write(
                CacheEntry(
                    workspace_key=workspace_key(workspace),
                    workspace=os.path.abspath(os.fspath(workspace)),
                    last_source_mtime=current_mtime,
                    last_run_time=now,
                    last_result=RunResult.RUNNING,
                )
            )
            return None
        except OSError as e:
            log.warn(f"Test cache unavailable for {workspace}, skipping check: {e!r}")
            return None

    def record_result(self, workspace: str | Path, result: RunResult) -> None:
        """Move the workspace's entry to a terminal state.

        Keeps the mtime recorded when the run started, so edits made while
        the suite was running still count as changes next time.
        """
        try:
            entry = self.read(workspace)
            if entry is None:
                entry = CacheEntry(
                    workspace_key=workspace_key(workspace),
                    workspace=os.path.abspath(os.fspath(workspace)),
                    last_source_mtime=self.source_mtime(workspace),
                    last_run_time=self.clock(),
                )
            entry.last_result = result
            self.write(entry)
        except OSError as e:
            log.warn(f"Could not record test result for {workspace}: {e!r}")
