# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT
"""Tests for legacy history backfill parsing."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from cliwrapped.events.history_import import (
    HistoryFormat,
    HistoryLine,
    default_history_sources,
    detect_format,
    import_history,
    is_valid_directory,
    parse_stats_log_line,
    parse_zsh_history_line,
)
from cliwrapped.events.models import ShellKind

pytestmark = pytest.mark.unit


class TestIsValidDirectory:
    @pytest.mark.parametrize("path", ["/Users/me", "~/dev", "/"])
    def test_filesystem_paths(self, path: str) -> None:
        assert is_valid_directory(path)

    @pytest.mark.parametrize(
        "path", ["", "relative/dir", "https://example.com/x", "/github.com/org"]
    )
    def test_rejected(self, path: str) -> None:
        assert not is_valid_directory(path)


class TestParseStatsLogLine:
    def test_pipe_format(self) -> None:
        assert parse_stats_log_line(
            "1744686489|cargo run -- stats|/Users/me/dev/cli-wrapped"
        ) == HistoryLine(1744686489, "cargo run -- stats", "/Users/me/dev/cli-wrapped")

    def test_pipe_format_drops_url_directory(self) -> None:
        entry = parse_stats_log_line("1744686489|git clone x|https://github.com/x")
        assert entry == HistoryLine(1744686489, "git clone x", None)

    def test_colon_format(self) -> None:
        entry = parse_stats_log_line(
            "1744686489:cargo run -- stats:/Users/me/dev/cli-wrapped"
        )
        assert entry == HistoryLine(
            1744686489, "cargo run -- stats", "/Users/me/dev/cli-wrapped"
        )

    def test_colon_format_without_directory(self) -> None:
        entry = parse_stats_log_line("1744686489:echo a:b")
        assert entry == HistoryLine(1744686489, "echo a:b", None)

    def test_zsh_style_with_directory(self) -> None:
        entry = parse_stats_log_line(": 1744405541:0;nvim ~/.zshrc:/Users/me")
        assert entry == HistoryLine(1744405541, "nvim ~/.zshrc", "/Users/me", 0)

    def test_zsh_style_without_directory(self) -> None:
        entry = parse_stats_log_line(": 1744405541:3;nvim ~/.zshrc")
        assert entry == HistoryLine(1744405541, "nvim ~/.zshrc", None, 3)

    @pytest.mark.parametrize("line", ["ls -la", "", ": notanumber:0;ls", "abc|ls|/"])
    def test_unparseable_lines_skipped(self, line: str) -> None:
        assert parse_stats_log_line(line) is None


class TestParseZshHistoryLine:
    def test_extended_entry(self) -> None:
        assert parse_zsh_history_line(": 1744405541:3;make test") == HistoryLine(
            1744405541, "make test", None, 3
        )

    def test_plain_line_skipped(self) -> None:
        assert parse_zsh_history_line("make test") is None

    def test_empty_command_skipped(self) -> None:
        assert parse_zsh_history_line(": 1744405541:0;   ") is None


class TestImportHistory:
    def test_detect_format(self) -> None:
        assert detect_format(Path("/home/u/.zsh_history")) is HistoryFormat.ZSH
        assert detect_format(Path("/home/u/.cli_stats_log")) is HistoryFormat.STATS_LOG

    def test_zsh_history_file(self, tmp_path: Path) -> None:
        path = tmp_path / ".zsh_history"
        path.write_text(
            ": 1709632800:2;make test\n"
            "plain line\n"
            ": 1709632900:0;echo one \\\n"
            "two\n"
        )

        events = list(import_history(path))

        assert [e.command for e in events] == ["make test", "echo one \ntwo"]
        first = events[0]
        assert first.start_time == datetime(2024, 3, 5, 10, tzinfo=UTC)
        assert first.duration_ms == 2000
        assert first.exit_code == 0
        assert first.shell is ShellKind.ZSH
        assert first.session_id == "import:.zsh_history"
        assert [e.sequence for e in events] == [1, 3]

    def test_stats_log_file(self, tmp_path: Path) -> None:
        path = tmp_path / ".cli_stats_log"
        path.write_text(
            "1709632800|ls -la|/home/user\n"
            "garbage\n"
            "1709632860:git status:/home/user/repo\n"
        )

        events = list(import_history(path))

        assert [(e.command, e.cwd) for e in events] == [
            ("ls -la", "/home/user"),
            ("git status", "/home/user/repo"),
        ]
        assert all(e.shell is ShellKind.UNKNOWN for e in events)

    def test_reimport_yields_identical_keys(self, tmp_path: Path) -> None:
        path = tmp_path / ".cli_stats_log"
        path.write_text("1709632800|ls|/\n1709632801|pwd|/\n")

        first = [(e.session_id, e.sequence) for e in import_history(path)]
        second = [(e.session_id, e.sequence) for e in import_history(path)]
        assert first == second

    def test_default_sources(self, tmp_path: Path) -> None:
        assert default_history_sources(tmp_path) == []
        (tmp_path / ".zsh_history").write_text("")
        (tmp_path / ".cli_stats_log").write_text("")
        assert default_history_sources(tmp_path) == [
            tmp_path / ".cli_stats_log",
            tmp_path / ".zsh_history",
        ]
