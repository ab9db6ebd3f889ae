"""CLI entry point.

Configured as a command hook in the agent runtime's settings:

    "PreToolUse":  [{"matcher": "*", "hooks": [{"type": "command", "command": "hook-guard pre"}]}]
    "PostToolUse": [{"matcher": "*", "hooks": [{"type": "command", "command": "hook-guard post"}]}]
"""

import json
import sys
import time
from pathlib import Path
from typing import Any

import tyro

from hook_guard.cli import Args, CacheArgs, LogArgs, PostArgs, PreArgs
from hook_guard.config import Settings
from hook_guard.hooks import AuditLogger, ChangeAwareCache, Dispatcher, format_elapsed
from hook_guard.hooks.dispatcher import EXIT_OK
from hook_guard.log import log


def _read_payload() -> Any | None:
    """Read the runtime's JSON event from stdin, None if unusable."""
    try:
        return json.load(sys.stdin)
    except (json.JSONDecodeError, UnicodeDecodeError, EOFError) as e:
        log.warn(f"Hook received malformed/empty JSON input, failing open: {e}")
        return None


def _configure_logging(cfg: Settings) -> None:
    log.set_level(cfg.log_level)
    if cfg.debug_log is not None:
        try:
            log.add_file_handler(cfg.debug_log)
        except OSError as e:
            log.warn(f"Cannot open debug log {cfg.debug_log}: {e!r}")


# --- Command Handlers ---


def cmd_pre(cfg: Settings, args: PreArgs) -> int:
    """Evaluate a pre-tool event; prints the decision JSON if a guard fired."""
    payload = _read_payload()
    if payload is None:
        return EXIT_OK

    try:
        response = Dispatcher(cfg).handle_pre(payload)
    except Exception:  # noqa: BLE001
        log.exception("Pre-tool hook failed, allowing the call")
        return EXIT_OK

    if response.output is not None:
        print(json.dumps(response.output))
        if response.exit_code != EXIT_OK:
            # Exit code 2 feeds stderr back to the agent
            print(response.output["hookSpecificOutput"]["additionalContext"], file=sys.stderr)
    return response.exit_code


def cmd_post(cfg: Settings, args: PostArgs) -> int:
    """Record a post-tool event."""
    payload = _read_payload()
    if payload is None:
        return EXIT_OK

    try:
        Dispatcher(cfg).handle_post(payload)
    except Exception:  # noqa: BLE001
        log.exception("Post-tool hook failed")
    return EXIT_OK


def cmd_cache(cfg: Settings, args: CacheArgs) -> int:
    """Show the cached test state for a workspace."""
    workspace = (args.cwd or Path.cwd()).absolute()
    cache = ChangeAwareCache(cfg.cache_dir, cfg.tracked_dirs)
    entry = cache.read(workspace)

    if entry is None:
        print(f"No test cache entry for {workspace}")
        return EXIT_OK

    current = cache.source_mtime(workspace)
    changed = current > entry.last_source_mtime
    print(f"Workspace:    {entry.workspace or workspace}")
    print(f"Cache file:   {cache.path_for(workspace)}")
    print(f"Last result:  {entry.last_result}")
    print(f"Last run:     {format_elapsed(time.time() - entry.last_run_time)} ago")
    print(f"Sources:      {'changed since last run' if changed else 'unchanged'}")
    return EXIT_OK


def cmd_log(cfg: Settings, args: LogArgs) -> int:
    """Print the latest audit records as JSON lines."""
    audit = AuditLogger(cfg.log_dir, cfg.log_max_bytes)
    try:
        records = audit.read_lines(include_rotated=args.all)
    except (OSError, ValueError, KeyError) as e:
        sys.exit(f"Error reading audit log {audit.path}: {e}")

    for record in records[-args.lines :] if args.lines > 0 else records:
        print(record.to_json())
    return EXIT_OK


def main() -> None:
    """CLI entry point."""
    args = tyro.cli(
        Args,
        prog="hook-guard",
        description="Guard, cache and audit hooks for agent tool calls.",
    )
    cfg = Settings.from_env()
    _configure_logging(cfg)

    match args:
        case PreArgs():
            code = cmd_pre(cfg, args)
        case PostArgs():
            code = cmd_post(cfg, args)
        case CacheArgs():
            code = cmd_cache(cfg, args)
        case LogArgs():
            code = cmd_log(cfg, args)
        case _:
            sys.exit(f"Unknown command type: {type(args)}")
    sys.exit(code)


if __name__ == "__main__":
    main()
