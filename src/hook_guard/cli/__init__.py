"""CLI package for hook-guard."""

from hook_guard.cli.args import Args, CacheArgs, LogArgs, PostArgs, PreArgs

__all__ = [
    "Args",
    "CacheArgs",
    "LogArgs",
    "PostArgs",
    "PreArgs",
]
