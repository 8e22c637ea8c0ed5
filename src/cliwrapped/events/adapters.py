# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Shell hook adapters.

Each shell reports a finished command differently: zsh hooks see
``$EPOCHREALTIME`` (float seconds) at preexec and precmd, bash only has
whole seconds plus whatever the hook measured, and fish hands over
``$CMD_DURATION`` in milliseconds at the end of the command. An adapter
turns one shell's hook variables into the canonical RawCommandEvent so the
rest of the pipeline never looks at ShellKind.

Hook payloads are plain ``dict[str, str]`` because that is what a shell
snippet can produce without dependencies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from cliwrapped.events.models import RawCommandEvent, ShellKind


class ShellAdapter(ABC):
    """Normalizes one shell dialect's hook variables into a RawCommandEvent."""

    shell: ShellKind

    @abstractmethod
    def normalize(self, hook_vars: Mapping[str, str]) -> RawCommandEvent:
        """Build the canonical raw event.

        Raises:
            KeyError: A required hook variable is missing.
            ValueError: A variable cannot be parsed, or the event is invalid.
        """

    def _build(
        self,
        hook_vars: Mapping[str, str],
        start_time: datetime,
        duration_ms: int,
    ) -> RawCommandEvent:
        return RawCommandEvent(
            command=hook_vars["command"],
            start_time=start_time,
            duration_ms=max(0, duration_ms),
            cwd=hook_vars.get("cwd", ""),
            exit_code=int(hook_vars["status"]),
            shell=self.shell,
            session_id=hook_vars["session"],
            sequence=int(hook_vars["sequence"]),
        )


class ZshAdapter(ShellAdapter):
    """zsh: ``started`` and ``finished`` are ``$EPOCHREALTIME`` values."""

    shell = ShellKind.ZSH

    def normalize(self, hook_vars: Mapping[str, str]) -> RawCommandEvent:
        started = float(hook_vars["started"])
        finished = float(hook_vars.get("finished", hook_vars["started"]))
        duration_ms = round((finished - started) * 1000)
        return self._build(
            hook_vars, datetime.fromtimestamp(started, tz=UTC), duration_ms
        )


class BashAdapter(ShellAdapter):
    """bash: ``started`` is epoch seconds, ``duration_ms`` measured by the hook."""

    shell = ShellKind.BASH

    def normalize(self, hook_vars: Mapping[str, str]) -> RawCommandEvent:
        started = datetime.fromtimestamp(int(hook_vars["started"]), tz=UTC)
        return self._build(hook_vars, started, int(hook_vars.get("duration_ms", "0")))


class FishAdapter(ShellAdapter):
    """fish: ``finished`` is epoch seconds, ``CMD_DURATION`` in milliseconds.

    The start time is derived by subtracting the duration from the end time.
    """

    shell = ShellKind.FISH

    def normalize(self, hook_vars: Mapping[str, str]) -> RawCommandEvent:
        finished = datetime.fromtimestamp(float(hook_vars["finished"]), tz=UTC)
        duration_ms = int(hook_vars.get("CMD_DURATION", "0"))
        started = finished - timedelta(milliseconds=duration_ms)
        return self._build(hook_vars, started, duration_ms)


_ADAPTERS: dict[ShellKind, ShellAdapter] = {
    adapter.shell: adapter
    for adapter in (ZshAdapter(), BashAdapter(), FishAdapter())
}


def adapter_for(shell: ShellKind | str) -> ShellAdapter:
    """Return the adapter for a shell.

    Raises:
        ValueError: No adapter exists for the shell.
    """
    kind = ShellKind(shell)
    try:
        return _ADAPTERS[kind]
    except KeyError:
        raise ValueError(f"No hook adapter for shell {kind.value!r}") from None


__all__: list[str] = [
    "BashAdapter",
    "FishAdapter",
    "ShellAdapter",
    "ZshAdapter",
    "adapter_for",
]
