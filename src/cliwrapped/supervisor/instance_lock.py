# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Single-instance lock for the daemon.

The lock is an exclusive ``flock`` on ``daemon.lock`` held for the life of
the daemon. The file body records who holds it:

    {"pid": 4242, "started_at": "...", "heartbeat": "..."}

The kernel releases the flock when the holder dies, so a lock file left
behind by a crashed daemon is reclaimed on the next start. Readers that
cannot take the flock themselves (``stop``/``status`` from another process)
judge liveness from the recorded pid plus the recency of its heartbeat.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cliwrapped.lib.errors import LockConflictError

logger = logging.getLogger(__name__)


def pid_exists(pid: int) -> bool:
    """Whether a process with this pid exists (signal 0 probe)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


@dataclass(frozen=True)
class LockHolder:
    """Contents of the lock file."""

    pid: int
    started_at: datetime
    heartbeat: datetime

    def heartbeat_age(self, now: datetime | None = None) -> float:
        now = now or datetime.now(UTC)
        return max(0.0, (now - self.heartbeat).total_seconds())

    def is_alive(self, stale_after: float, now: datetime | None = None) -> bool:
        """Process exists and has refreshed its heartbeat recently."""
        return pid_exists(self.pid) and self.heartbeat_age(now) <= stale_after

    def to_json(self) -> str:
        return json.dumps(
            {
                "pid": self.pid,
                "started_at": self.started_at.isoformat(),
                "heartbeat": self.heartbeat.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, text: str) -> LockHolder:
        data = json.loads(text)
        return cls(
            pid=int(data["pid"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            heartbeat=datetime.fromisoformat(data["heartbeat"]),
        )


def read_holder(path: Path) -> LockHolder | None:
    """Parse the lock file; None if it is missing, empty or unreadable."""
    try:
        text = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug(f"Cannot read lock file {path}: {e}")
        return None
    if not text:
        return None
    try:
        return LockHolder.from_json(text)
    except (ValueError, KeyError, TypeError) as e:
        logger.debug(f"Ignoring malformed lock file {path}: {e}")
        return None


def is_locked(path: Path) -> bool:
    """Whether some process currently holds the flock on ``path``."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except FileNotFoundError:
        return False
    try:
        fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
    except BlockingIOError:
        return True
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)
        return False
    finally:
        os.close(fd)


def live_holder(path: Path, stale_after: float) -> LockHolder | None:
    """The running daemon's lock record, or None if no live daemon holds the lock.

    A held flock is authoritative. Without one, the recorded pid and
    heartbeat decide (e.g. on filesystems where flock is a no-op).
    """
    holder = read_holder(path)
    if holder is None:
        return None
    if is_locked(path):
        return holder
    return holder if holder.is_alive(stale_after) else None


class InstanceLock:
    """Exclusive, heartbeat-refreshed lock on the storage directory.

    Example:
        >>> lock = InstanceLock(config.lock_path, stale_after=60.0)
        >>> lock.acquire()
        >>> lock.heartbeat()
        >>> lock.release()
    """

    def __init__(self, path: Path, stale_after: float = 60.0) -> None:
        self.path = path
        self.stale_after = stale_after
        self._fd: int | None = None
        self._holder: LockHolder | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    @property
    def holder(self) -> LockHolder | None:
        return self._holder

    def acquire(self) -> LockHolder:
        """Take the lock and record this process as the holder.

        Raises:
            LockConflictError: A live process already holds the lock.
        """
        if self._fd is not None and self._holder is not None:
            return self._holder

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            holder = read_holder(self.path)
            if holder is not None and not holder.is_alive(self.stale_after):
                logger.warning(
                    f"Lock held by pid {holder.pid} with a stale heartbeat "
                    f"({holder.heartbeat_age():.0f}s old); refusing to take it over"
                )
            raise LockConflictError(
                f"Another instance holds {self.path}",
                holder_pid=holder.pid if holder else None,
            ) from None

        previous = read_holder(self.path)
        if previous is not None and previous.pid != os.getpid():
            logger.info(f"Reclaimed lock left by dead instance (pid {previous.pid})")

        now = datetime.now(UTC)
        self._fd = fd
        self._holder = LockHolder(pid=os.getpid(), started_at=now, heartbeat=now)
        try:
            self._write(self._holder)
        except OSError:
            self.release()
            raise
        logger.info("Instance lock acquired", extra={"pid": self._holder.pid})
        return self._holder

    def heartbeat(self) -> None:
        """Refresh the heartbeat timestamp in the lock file."""
        if self._fd is None or self._holder is None:
            return
        self._holder = LockHolder(
            pid=self._holder.pid,
            started_at=self._holder.started_at,
            heartbeat=datetime.now(UTC),
        )
        self._write(self._holder)

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        self._holder = None
        try:
            os.ftruncate(fd, 0)
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as e:
            logger.warning(f"Error releasing instance lock: {e}")
        finally:
            os.close(fd)
        logger.info("Instance lock released")

    def _write(self, holder: LockHolder) -> None:
        if self._fd is None:
            raise RuntimeError("Instance lock is not held")
        data = holder.to_json().encode("utf-8")
        os.ftruncate(self._fd, 0)
        os.pwrite(self._fd, data, 0)
        os.fsync(self._fd)

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


__all__: list[str] = [
    "InstanceLock",
    "LockHolder",
    "is_locked",
    "live_holder",
    "pid_exists",
    "read_holder",
]
