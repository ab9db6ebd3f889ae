"""CLI argument dataclasses for tyro."""

from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Union

import tyro


@dataclass
class PreArgs:
    """Evaluate a PreToolUse event read from stdin.

    Prints a decision object when a guard fires; prints nothing to allow.
    Exits 2 when the call is blocked.
    """

    pass


@dataclass
class PostArgs:
    """Record a PostToolUse event read from stdin in the cache and audit log."""

    pass


@dataclass
class CacheArgs:
    """Show the test cache entry for a workspace."""

    cwd: Path | None = None
    """Workspace to inspect (default: current directory)."""


@dataclass
class LogArgs:
    """Show the latest audit log records."""

    lines: int = 20
    """Number of records to show."""

    all: bool = False
    """Include records from rotated (compressed) logs."""


# Main CLI type - Union of all commands
# Use directly with tyro.cli(): `hook-guard pre < event.json`
Args = Union[
    Annotated[PreArgs, tyro.conf.subcommand(name="pre")],
    Annotated[PostArgs, tyro.conf.subcommand(name="post")],
    Annotated[CacheArgs, tyro.conf.subcommand(name="cache")],
    Annotated[LogArgs, tyro.conf.subcommand(name="log")],
]
