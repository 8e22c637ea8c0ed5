# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Durable event storage: WAL segments, index checkpoint, retention."""

from cliwrapped.storage.event_store import (
    AppendResult,
    DurableEventStore,
    IndexEntry,
    StoreStats,
)

__all__: list[str] = [
    "AppendResult",
    "DurableEventStore",
    "IndexEntry",
    "StoreStats",
]
