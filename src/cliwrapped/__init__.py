# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""cli-wrapped - local shell command capture and history analytics.

A single-user daemon that receives one event per completed shell command,
persists it in a crash-safe write-ahead log, keeps time-bucketed rollups
current, and answers analytical queries (frequency tables, trends, and a
yearly "wrapped" summary).
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cli-wrapped")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
