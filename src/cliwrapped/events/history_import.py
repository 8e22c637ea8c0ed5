# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Backfill from existing shell history files.

Two legacy formats are understood:

Stats log (``~/.cli_stats_log``), one command per line in any of::

    1744686489|cargo run -- stats|/Users/me/dev/cli-wrapped
    1744686489:cargo run -- stats:/Users/me/dev/cli-wrapped
    : 1744405541:0;nvim ~/.zshrc
    : 1744405541:0;nvim ~/.zshrc:/Users/me

zsh extended history (``~/.zsh_history``)::

    : 1744405541:3;make test

Plain lines without a timestamp cannot become events (no start time) and
are skipped. A directory is only kept when it looks like a filesystem path
(starts with ``/`` or ``~``) and not like a URL.

Imported events carry session id ``import:<file name>`` and the line number
as sequence, so importing the same file twice stores each command once.
Exit status is not recorded by either format and is imported as 0.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

from pydantic import ValidationError

from cliwrapped.events.models import RawCommandEvent, ShellKind

logger = logging.getLogger(__name__)


class HistoryFormat(StrEnum):
    STATS_LOG = "stats_log"
    ZSH = "zsh"


@dataclass(frozen=True)
class HistoryLine:
    """One parsed history line."""

    timestamp: int
    command: str
    directory: str | None = None
    elapsed_seconds: int = 0


def is_valid_directory(path: str) -> bool:
    if not path:
        return False
    if not path.startswith(("/", "~")):
        return False
    return "://" not in path and "github.com" not in path


def _zsh_extended(line: str) -> tuple[int, int, str] | None:
    """Split ``: <ts>:<elapsed>;<rest>`` into its parts."""
    if not line.startswith(": "):
        return None
    header, sep, rest = line[2:].partition(";")
    if not sep:
        return None
    ts_str, _, elapsed_str = header.partition(":")
    try:
        timestamp = int(ts_str.strip())
    except ValueError:
        return None
    try:
        elapsed = int(elapsed_str.strip() or "0")
    except ValueError:
        elapsed = 0
    return timestamp, elapsed, rest


def parse_zsh_history_line(line: str) -> HistoryLine | None:
    parsed = _zsh_extended(line)
    if parsed is None:
        return None
    timestamp, elapsed, command = parsed
    command = command.strip()
    if not command:
        return None
    return HistoryLine(timestamp, command, None, elapsed)


def parse_stats_log_line(line: str) -> HistoryLine | None:
    line = line.rstrip("\n")

    pipe_parts = line.split("|")
    if len(pipe_parts) == 3 and pipe_parts[0].isdigit():
        command = pipe_parts[1]
        directory = pipe_parts[2].strip()
        if command:
            return HistoryLine(
                int(pipe_parts[0]),
                command,
                directory if is_valid_directory(directory) else None,
            )

    if line.startswith(": "):
        parsed = _zsh_extended(line)
        if parsed is None:
            return None
        timestamp, elapsed, rest = parsed
        command, sep, directory = rest.rpartition(":")
        if not sep or not is_valid_directory(directory.strip()):
            command, directory = rest, ""
        command = command.strip()
        if not command:
            return None
        return HistoryLine(timestamp, command, directory.strip() or None, elapsed)

    ts_str, sep, rest = line.partition(":")
    if sep and ts_str.isdigit():
        command, sep, directory = rest.rpartition(":")
        if not sep or not is_valid_directory(directory.strip()):
            command, directory = rest, ""
        command = command.strip()
        if command:
            return HistoryLine(int(ts_str), command, directory.strip() or None)

    # Plain command: no timestamp, nothing to import.
    return None


def _logical_lines(path: Path) -> Iterator[tuple[int, str]]:
    """Yield (first line number, text), joining backslash continuations."""
    pending: list[str] = []
    start = 0
    with path.open(encoding="utf-8", errors="replace") as fh:
        for lineno, raw in enumerate(fh, start=1):
            text = raw.rstrip("\n")
            if not pending:
                start = lineno
            if text.endswith("\\"):
                pending.append(text[:-1])
                continue
            pending.append(text)
            yield start, "\n".join(pending)
            pending = []
    if pending:
        yield start, "\n".join(pending)


def detect_format(path: Path) -> HistoryFormat:
    return HistoryFormat.ZSH if "zsh_history" in path.name else HistoryFormat.STATS_LOG


def import_history(
    path: Path, fmt: HistoryFormat | None = None
) -> Iterator[RawCommandEvent]:
    """Yield raw events for every importable line of a history file."""
    fmt = fmt or detect_format(path)
    parse = parse_zsh_history_line if fmt is HistoryFormat.ZSH else parse_stats_log_line
    shell = ShellKind.ZSH if fmt is HistoryFormat.ZSH else ShellKind.UNKNOWN
    session_id = f"import:{path.name}"
    skipped = 0

    for lineno, text in _logical_lines(path):
        entry = parse(text)
        if entry is None or entry.timestamp <= 0:
            skipped += 1
            continue
        try:
            yield RawCommandEvent(
                command=entry.command,
                start_time=datetime.fromtimestamp(entry.timestamp, tz=UTC),
                duration_ms=entry.elapsed_seconds * 1000,
                cwd=entry.directory or "",
                exit_code=0,
                shell=shell,
                session_id=session_id,
                sequence=lineno,
            )
        except ValidationError:
            skipped += 1

    if skipped:
        logger.info(
            f"Skipped {skipped} unimportable lines",
            extra={"path": str(path), "format": fmt.value},
        )


def default_history_sources(home: Path | None = None) -> list[Path]:
    """Existing legacy history files, stats log first."""
    home = home or Path.home()
    candidates = [home / ".cli_stats_log", home / ".zsh_history"]
    return [p for p in candidates if p.is_file()]


__all__: list[str] = [
    "HistoryFormat",
    "HistoryLine",
    "default_history_sources",
    "detect_format",
    "import_history",
    "is_valid_directory",
    "parse_stats_log_line",
    "parse_zsh_history_line",
]
