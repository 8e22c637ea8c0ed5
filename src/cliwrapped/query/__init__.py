# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Read-only query surface over the event store and rollups."""

from cliwrapped.query.models import HistoryPage, StatsResult
from cliwrapped.query.query_api import QueryAPI

__all__ = [
    "HistoryPage",
    "QueryAPI",
    "StatsResult",
]
