"""hook-guard: guard, cache and audit hooks for agent tool calls."""

__version__ = "0.1.0"
