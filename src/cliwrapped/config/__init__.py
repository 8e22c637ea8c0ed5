"""cli-wrapped configuration - Pydantic Settings for environment configuration."""

from __future__ import annotations

from .settings import BackpressurePolicy, DaemonConfig, DurabilityPolicy

__all__ = [
    "BackpressurePolicy",
    "DaemonConfig",
    "DurabilityPolicy",
]
