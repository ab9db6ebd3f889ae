"""In-process hooks for agents built on claude_agent_sdk.

The same dispatcher that backs the ``hook-guard`` command can be wired
straight into an SDK agent:

    dispatcher = Dispatcher(Settings())
    options = ClaudeAgentOptions(hooks=build_hook_matchers(dispatcher), ...)
"""

from typing import Any

from claude_agent_sdk import HookMatcher

from hook_guard.hooks.dispatcher import Dispatcher, format_context
from hook_guard.models import Verdict


def make_pre_tool_hook(dispatcher: Dispatcher):
    """Create a PreToolUse hook running the guard pipeline.

    Args:
        dispatcher: The Dispatcher to evaluate tool calls with.

    Returns:
        An async hook function for use with claude_agent_sdk.
    """

    async def pre_tool_hook(
        input_data: dict[str, Any], tool_use_id: str | None, _context: Any
    ) -> dict[str, Any]:
        """Return {} to allow, hook-specific output to ask or block."""
        response = dispatcher.handle_pre(input_data)
        if response.output is None:
            return {}

        output = dict(response.output)
        if response.decision.verdict is Verdict.BLOCK:
            output["decision"] = "block"
            output["reason"] = format_context(response.decision)
        return output

    return pre_tool_hook


def make_post_tool_hook(dispatcher: Dispatcher):
    """Create a PostToolUse hook feeding the cache and audit log."""

    async def post_tool_hook(
        input_data: dict[str, Any], tool_use_id: str | None, _context: Any
    ) -> dict[str, Any]:
        dispatcher.handle_post(input_data)
        return {}

    return post_tool_hook


def build_hook_matchers(dispatcher: Dispatcher) -> dict[str, list[HookMatcher]]:
    """Hook configuration covering every tool, for ClaudeAgentOptions(hooks=...)."""
    return {
        "PreToolUse": [HookMatcher(matcher=".*", hooks=[make_pre_tool_hook(dispatcher)])],  # pyright: ignore[reportArgumentType]
        "PostToolUse": [HookMatcher(matcher=".*", hooks=[make_post_tool_hook(dispatcher)])],  # pyright: ignore[reportArgumentType]
    }
