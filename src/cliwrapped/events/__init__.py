# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Command event models, shell adapters, and history import."""

from __future__ import annotations

from cliwrapped.events.adapters import (
    BashAdapter,
    FishAdapter,
    ShellAdapter,
    ZshAdapter,
    adapter_for,
)
from cliwrapped.events.models import (
    CommandEvent,
    ExitClass,
    RawCommandEvent,
    ShellKind,
    command_category,
)

__all__ = [
    "BashAdapter",
    "CommandEvent",
    "ExitClass",
    "FishAdapter",
    "RawCommandEvent",
    "ShellAdapter",
    "ShellKind",
    "ZshAdapter",
    "adapter_for",
    "command_category",
]
