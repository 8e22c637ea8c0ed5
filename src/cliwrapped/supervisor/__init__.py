"""cli-wrapped daemon supervisor.

Owns the daemon lifecycle (start/stop/status), the single-instance lock and
the drain on shutdown. Run ``python -m cliwrapped.supervisor --help``.

Imports are lazy so importing the status models does not pull in the whole
daemon. Use explicit imports:
``from cliwrapped.supervisor.service_supervisor import ServiceSupervisor``
"""

from __future__ import annotations

__all__: list[str] = [
    "DaemonContext",
    "HealthFlag",
    "InstanceLock",
    "ServiceState",
    "ServiceStatus",
    "ServiceSupervisor",
    "StopResult",
]


def __getattr__(name: str) -> object:
    if name in ("DaemonContext", "ServiceSupervisor"):
        from cliwrapped.supervisor import service_supervisor

        return getattr(service_supervisor, name)
    if name == "InstanceLock":
        from cliwrapped.supervisor.instance_lock import InstanceLock

        return InstanceLock
    if name in ("HealthFlag", "ServiceState", "ServiceStatus", "StopResult"):
        from cliwrapped.supervisor import models

        return getattr(models, name)
    raise AttributeError(f"module 'cliwrapped.supervisor' has no attribute {name!r}")
