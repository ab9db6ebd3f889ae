"""Tests for CLI argument parsing and command handlers."""

import io
import json
from pathlib import Path

import pytest
import tyro

from hook_guard.__main__ import cmd_cache, cmd_log, cmd_post, cmd_pre
from hook_guard.cli import Args, CacheArgs, LogArgs, PostArgs, PreArgs
from hook_guard.config import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(cache_dir=tmp_path / "cache", log_dir=tmp_path / "logs")


def _stdin(monkeypatch, payload):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    monkeypatch.setattr("sys.stdin", io.StringIO(text))


class TestArgs:
    """Tests for subcommand parsing."""

    @pytest.mark.parametrize(
        ("cli_args", "expected_type"),
        [
            (["pre"], PreArgs),
            (["post"], PostArgs),
            (["cache"], CacheArgs),
            (["log"], LogArgs),
        ],
        ids=["pre", "post", "cache", "log"],
    )
    def test_subcommands(self, cli_args, expected_type):
        """Each subcommand parses to its dataclass."""
        assert isinstance(tyro.cli(Args, args=cli_args), expected_type)

    def test_cache_cwd_converted_to_path(self):
        """--cwd is converted to a Path."""
        args = tyro.cli(Args, args=["cache", "--cwd", "/work/pkg"])

        assert isinstance(args, CacheArgs)
        assert args.cwd == Path("/work/pkg")

    def test_log_options(self):
        """--lines and --all are parsed."""
        args = tyro.cli(Args, args=["log", "--lines", "5", "--all"])

        assert isinstance(args, LogArgs)
        assert args.lines == 5
        assert args.all is True

    def test_unknown_subcommand_exits(self):
        """Unknown subcommands are rejected."""
        with pytest.raises(SystemExit):
            tyro.cli(Args, args=["frobnicate"])


class TestCmdPre:
    """Tests for the pre hook command."""

    def test_allow_prints_nothing(self, settings, monkeypatch, capsys):
        """Pass-through allow: no output, exit 0."""
        _stdin(monkeypatch, {"tool_name": "Bash", "tool_input": {"command": "ls"}})

        assert cmd_pre(settings, PreArgs()) == 0
        assert capsys.readouterr().out == ""

    def test_ask_prints_decision(self, settings, monkeypatch, capsys):
        """Ask: decision JSON on stdout, exit 0."""
        monkeypatch.delenv("IN_NIX_SHELL", raising=False)
        _stdin(monkeypatch, {"tool_name": "Bash", "tool_input": {"command": "Rscript a.R"}, "cwd": "/w"})

        assert cmd_pre(settings, PreArgs()) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["hookSpecificOutput"]["permissionDecision"] == "ask"

    def test_block_exits_2(self, tmp_path, monkeypatch, capsys):
        """Block: decision on stdout, reasons on stderr, exit 2."""
        settings = Settings(
            cache_dir=tmp_path / "c", log_dir=tmp_path / "l", strict_isolation=True
        )
        monkeypatch.delenv("IN_NIX_SHELL", raising=False)
        _stdin(monkeypatch, {"tool_name": "Bash", "tool_input": {"command": "Rscript a.R"}})

        assert cmd_pre(settings, PreArgs()) == 2
        captured = capsys.readouterr()
        assert json.loads(captured.out)["hookSpecificOutput"]["permissionDecision"] == "block"
        assert "BLOCKED" in captured.err

    @pytest.mark.parametrize("raw", ["", "{not json", "[1, 2"], ids=["empty", "broken", "partial"])
    def test_malformed_stdin_fails_open(self, settings, monkeypatch, capsys, raw):
        """Unparseable input exits 0 with no output."""
        _stdin(monkeypatch, raw)

        assert cmd_pre(settings, PreArgs()) == 0
        assert capsys.readouterr().out == ""


class TestCmdPostAndInspect:
    """Tests for post, cache and log commands."""

    def test_post_then_log(self, settings, monkeypatch, capsys):
        """A recorded post event shows up in `hook-guard log`."""
        _stdin(
            monkeypatch,
            {
                "tool_name": "Bash",
                "tool_input": {"command": "git push origin main"},
                "session_id": "s1",
                "hook_event_name": "PostToolUse",
                "tool_response": {"stdout": "", "stderr": ""},
            },
        )
        assert cmd_post(settings, PostArgs()) == 0

        assert cmd_log(settings, LogArgs(lines=10)) == 0
        record = json.loads(capsys.readouterr().out.strip())
        assert record["type"] == "git"
        assert record["payload"]["subcommand"] == "push"

    def test_cache_without_entry(self, settings, tmp_path, capsys):
        """No entry is reported plainly."""
        assert cmd_cache(settings, CacheArgs(cwd=tmp_path)) == 0
        assert "No test cache entry" in capsys.readouterr().out

    def test_cache_with_entry(self, settings, tmp_path, monkeypatch, capsys):
        """After a test run the entry is shown."""
        ws = tmp_path / "pkg"
        ws.mkdir()
        _stdin(
            monkeypatch,
            {
                "tool_name": "Bash",
                "tool_input": {"command": "Rscript -e 'devtools::test()'"},
                "cwd": str(ws),
                "tool_response": {"stdout": "[ FAIL 0 | WARN 0 | SKIP 0 | PASS 3 ]"},
            },
        )
        cmd_post(settings, PostArgs())

        assert cmd_cache(settings, CacheArgs(cwd=ws)) == 0
        out = capsys.readouterr().out
        assert "Last result:  passed" in out
        assert "unchanged" in out
