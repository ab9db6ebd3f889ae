"""Hook configuration using pydantic-settings."""

import sys
from pathlib import Path
from typing import Annotated, ClassVar

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_STATE_DIR = Path("~/.cache/hook-guard")


class Settings(BaseSettings):
    """Hook configuration loaded from environment variables.

    All variables are optional and prefixed with HOOK_GUARD_:
        CACHE_DIR: Where per-workspace test cache files live
        LOG_DIR: Where the audit log (and its rotated siblings) live
        LOG_MAX_BYTES: Audit log size that triggers rotation
        TRACKED_DIRS: Comma-separated subtrees watched for changes (default R,tests)
        ISOLATION_VAR: Variable that marks a reproducible shell (default IN_NIX_SHELL)
        STRICT_ISOLATION: Block (instead of ask) R outside the isolated shell
        ENFORCE_BLOCK: Treat block verdicts as hard blocks (false: downgrade to ask)
        DEBUG_LOG: Optional file for diagnostic logs
        LOG_LEVEL: Console level for diagnostics (stderr)
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="HOOK_GUARD_",
        env_file=None,  # Only read from environment variables, not files
        validate_default=True,
    )

    cache_dir: Path = DEFAULT_STATE_DIR / "test-cache"
    log_dir: Path = DEFAULT_STATE_DIR / "logs"
    log_max_bytes: int = Field(default=10_000_000, gt=0)
    tracked_dirs: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["R", "tests"])
    isolation_var: str = "IN_NIX_SHELL"
    strict_isolation: bool = False
    enforce_block: bool = True
    debug_log: Path | None = None
    log_level: str = "WARNING"

    @field_validator("cache_dir", "log_dir", "debug_log", mode="after")
    @classmethod
    def _expand_home(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None

    @field_validator("tracked_dirs", mode="before")
    @classmethod
    def _split_dirs(cls, value: object) -> object:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        try:
            return cls()
        except ValidationError as err:
            sys.exit(f"hook-guard configuration error: {err}")
