"""cli-wrapped event ingestion.

Provides the bounded queue, the writer loop that persists events, the Unix
socket server the shell hooks talk to, and the synchronous hook client.

Imports are lazy so shell hooks importing the client do not load the
storage and aggregation layers.
Use explicit imports: ``from cliwrapped.ingestion.hook_client import HookClient``
"""

from __future__ import annotations

__all__: list[str] = [
    "AckStatus",
    "Acknowledgement",
    "BoundedEventQueue",
    "HandoffOutcome",
    "HandoffResult",
    "HookClient",
    "IngestionService",
    "IngestionSocketServer",
    "QueuedEvent",
    "parse_request",
    "parse_response",
    "submit_from_hook",
]


def __getattr__(name: str) -> object:
    if name == "IngestionService":
        from cliwrapped.ingestion.ingestion_service import IngestionService

        return IngestionService
    if name == "IngestionSocketServer":
        from cliwrapped.ingestion.socket_server import IngestionSocketServer

        return IngestionSocketServer
    if name in ("BoundedEventQueue", "QueuedEvent"):
        from cliwrapped.ingestion import bounded_queue

        return getattr(bounded_queue, name)
    if name in ("HandoffOutcome", "HandoffResult", "HookClient", "submit_from_hook"):
        from cliwrapped.ingestion import hook_client

        return getattr(hook_client, name)
    if name in ("AckStatus", "Acknowledgement", "parse_request", "parse_response"):
        from cliwrapped.ingestion import protocol_models

        return getattr(protocol_models, name)
    raise AttributeError(f"module 'cliwrapped.ingestion' has no attribute {name!r}")
