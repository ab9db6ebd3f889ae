"""Diagnostics for hook-guard.

stdout belongs to the hook protocol, so everything here goes to stderr
(WARNING and up by default) and, when HOOK_GUARD_DEBUG_LOG is set, to a
small rotating file.

    from hook_guard.log import log

    log.warn("Audit log write failed: ...")
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def _parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.upper(), logging.WARNING)


class GuardLogger:
    """Logs the failures the hook pipeline recovers from."""

    def __init__(self, name: str = "hook-guard"):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(logging.DEBUG)  # handlers filter
        self._logger.propagate = False

        if not self._logger.handlers:
            self._console = logging.StreamHandler(sys.stderr)
            self._console.setLevel(logging.WARNING)
            self._console.setFormatter(logging.Formatter("hook-guard [%(levelname)s] %(message)s"))
            self._logger.addHandler(self._console)
        else:
            self._console = self._logger.handlers[0]

    def set_level(self, level: str | int) -> None:
        """Minimum level for stderr output ("DEBUG", "WARN", ... or a logging constant)."""
        self._console.setLevel(_parse_level(level))

    def add_file_handler(self, path: str | Path, max_bytes: int = 1_000_000) -> None:
        """Also write every diagnostic (DEBUG and up) to a rotating file."""
        path = Path(path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        if any(
            isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == path
            for h in self._logger.handlers
        ):
            return

        handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=3)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        self._logger.addHandler(handler)

    def debug(self, msg: str) -> None:
        self._logger.debug(msg)

    def warn(self, msg: str) -> None:
        self._logger.warning(msg)

    def exception(self, msg: str) -> None:
        """Log at ERROR with the current traceback."""
        self._logger.exception(msg)


log = GuardLogger()
