# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Durable event store: the system of record.

Write path: frame the event into the active WAL segment (fsync per the
durability policy), then publish it to the in-memory indices. Every event
gets a position, a dense counter that only grows; retention removes a
prefix of positions, never a hole.

Concurrency:
    * ``_write_lock`` serializes appends, rotation, sync, checkpoint and
      retirement (single writer).
    * ``_index_lock`` guards the index structures. It is only held for
      the index mutation after an append and for the lookup part of a
      read; record bytes are read from disk outside it.

Recovery (``open``):
    1. Validate or create the SCHEMA marker.
    2. Finish retiring segments that the baseline says were folded.
    3. Restore ``index.json`` if it is consistent with the segments on
       disk, otherwise start from an empty index.
    4. Replay the log from the checkpoint's covered position. A torn tail
       in the newest segment is truncated; any other invalid record is a
       CorruptionError.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from bisect import bisect_left, insort
from collections import Counter
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import BinaryIO

from pydantic import ValidationError

from cliwrapped.config.settings import DaemonConfig, DurabilityPolicy
from cliwrapped.events.models import CommandEvent
from cliwrapped.lib.errors import CorruptionError, ScanCancelledError, StorageIOError
from cliwrapped.storage.atomic import read_json, write_json_atomic
from cliwrapped.storage.wal import (
    HEADER,
    LogRecord,
    SegmentWriter,
    archive_segment,
    decode_frame,
    list_archives,
    list_segments,
    scan_segment,
    segment_name,
    truncate_segment,
)

logger = logging.getLogger(__name__)

SCHEMA_FORMAT = "cliwrapped-wal"
SCHEMA_VERSION = 1
INDEX_VERSION = 1
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_SCAN_BATCH = 512


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // timedelta(milliseconds=1)


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """Location and lookup keys of one stored event."""

    position: int
    started_at_ms: int
    segment: int
    offset: int
    length: int
    command: str
    cwd: str
    session_id: str
    sequence: int

    def as_row(self) -> list[object]:
        return [
            self.position,
            self.started_at_ms,
            self.segment,
            self.offset,
            self.length,
            self.command,
            self.cwd,
            self.session_id,
            self.sequence,
        ]

    @classmethod
    def from_row(cls, row: list[object]) -> IndexEntry:
        return cls(*row)  # type: ignore[arg-type]


@dataclass(frozen=True)
class AppendResult:
    """Where an appended event landed.

    ``duplicate`` is True when the idempotency key was already stored; the
    position is then that of the earlier record and nothing was written.
    """

    position: int
    segment: int
    offset: int
    duplicate: bool = False


@dataclass
class _SegmentInfo:
    count: int = 0
    bytes: int = 0
    max_started_ms: int | None = None


@dataclass(frozen=True)
class StoreStats:
    events: int
    segments: int
    live_bytes: int
    first_position: int
    next_position: int
    recovered_torn_bytes: int


class DurableEventStore:
    """Append-only, crash-safe store of CommandEvents with secondary indices.

    Example:
        store = DurableEventStore(config)
        store.open()
        result = store.append(event)
        recent = store.range(start=since)
        store.close()
    """

    def __init__(self, config: DaemonConfig) -> None:
        self.config = config
        self._write_lock = threading.Lock()
        self._index_lock = threading.Lock()
        self._writer: SegmentWriter | None = None
        self._next_segment = 1
        self._last_sync = time.monotonic()
        self.recovered_torn_bytes = 0
        self._reset_index()

    # =========================================================================
    # Index bookkeeping (callers hold _index_lock)
    # =========================================================================

    def _reset_index(self) -> None:
        self._entries: list[IndexEntry] = []
        self._first_position = 0
        self._next_position = 0
        self._key_positions: dict[tuple[str, int], int] = {}
        self._by_time: list[tuple[int, int]] = []
        self._by_command: dict[str, list[int]] = {}
        self._by_directory: dict[str, list[int]] = {}
        self._command_keys: list[str] = []
        self._directory_keys: list[str] = []
        self._by_session: dict[str, list[tuple[int, int]]] = {}
        self._command_counts: Counter[str] = Counter()
        self._directory_counts: Counter[str] = Counter()
        self._segments: dict[int, _SegmentInfo] = {}
        self._log_end: tuple[int, int] = (0, 0)

    def _index(self, entry: IndexEntry) -> None:
        if not self._entries:
            self._first_position = entry.position
        self._entries.append(entry)
        self._next_position = entry.position + 1
        self._key_positions[(entry.session_id, entry.sequence)] = entry.position
        insort(self._by_time, (entry.started_at_ms, entry.position))

        positions = self._by_command.get(entry.command)
        if positions is None:
            positions = self._by_command[entry.command] = []
            insort(self._command_keys, entry.command)
        positions.append(entry.position)

        positions = self._by_directory.get(entry.cwd)
        if positions is None:
            positions = self._by_directory[entry.cwd] = []
            insort(self._directory_keys, entry.cwd)
        positions.append(entry.position)

        insort(
            self._by_session.setdefault(entry.session_id, []),
            (entry.sequence, entry.position),
        )
        self._command_counts[entry.command] += 1
        self._directory_counts[entry.cwd] += 1

        info = self._segments.setdefault(entry.segment, _SegmentInfo())
        info.count += 1
        info.bytes = max(info.bytes, entry.offset + entry.length)
        if info.max_started_ms is None or entry.started_at_ms > info.max_started_ms:
            info.max_started_ms = entry.started_at_ms
        self._log_end = max(self._log_end, (entry.segment, entry.offset + entry.length))

    def _entry_at(self, position: int) -> IndexEntry | None:
        i = position - self._first_position
        if 0 <= i < len(self._entries):
            return self._entries[i]
        return None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self, retired_segments: Iterable[int] = ()) -> None:
        """Recover the store from disk and make it ready for appends.

        Args:
            retired_segments: Segments already folded into the baseline;
                any still present are archived or deleted first.

        Raises:
            CorruptionError: The schema marker is foreign or newer, or the
                log has an invalid record that is not a torn tail.
        """
        cfg = self.config
        cfg.storage_path.mkdir(parents=True, exist_ok=True)
        cfg.wal_dir.mkdir(exist_ok=True)
        self._check_schema()

        retired = set(retired_segments)
        self._finish_retirement(retired)

        segments = list_segments(cfg.wal_dir)
        restored = self._restore_checkpoint(segments)
        if not restored:
            with self._index_lock:
                self._reset_index()
        self._replay(segments)

        highest = [n for n, _ in segments]
        highest += [n for n, _ in list_archives(cfg.archive_dir)]
        highest += list(retired)
        self._next_segment = max(highest, default=0) + 1

        sync_each = cfg.durability is DurabilityPolicy.SYNC_EACH_WRITE
        if segments:
            self._writer = SegmentWriter(segments[-1][1], sync_each)
        else:
            self._writer = self._new_segment(sync_each)
        with self._index_lock:
            self._segments.setdefault(self._writer.number, _SegmentInfo())

        logger.info(
            f"Event store open: {self.count} events in {len(self._segments)} segments",
            extra={
                "storage_path": str(cfg.storage_path),
                "checkpoint_restored": restored,
                "next_position": self._next_position,
            },
        )

    def close(self) -> None:
        """Checkpoint the index and close the active segment."""
        if self._writer is None:
            return
        try:
            self.checkpoint()
        finally:
            with self._write_lock:
                if self._writer is not None:
                    self._writer.close()
                    self._writer = None
        logger.info("Event store closed")

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    def _check_schema(self) -> None:
        path = self.config.schema_path
        try:
            marker = read_json(path)
        except (OSError, ValueError) as e:
            raise CorruptionError(f"Unreadable schema marker {path}: {e}") from e
        if marker is None:
            write_json_atomic(path, {"format": SCHEMA_FORMAT, "version": SCHEMA_VERSION})
            return
        if not isinstance(marker, dict) or marker.get("format") != SCHEMA_FORMAT:
            raise CorruptionError(
                f"Storage directory holds an unknown format: {marker!r}",
                details={"path": str(path)},
            )
        version = marker.get("version")
        if not isinstance(version, int) or version < 1:
            raise CorruptionError(f"Invalid schema version {version!r}")
        if version > SCHEMA_VERSION:
            raise CorruptionError(
                f"Storage schema version {version} is newer than supported "
                f"version {SCHEMA_VERSION}",
                details={"version": version, "supported": SCHEMA_VERSION},
            )

    def _new_segment(self, sync_each: bool) -> SegmentWriter:
        path = self.config.wal_dir / segment_name(self._next_segment)
        self._next_segment += 1
        return SegmentWriter(path, sync_each)

    def _finish_retirement(self, retired: set[int]) -> None:
        for number, path in list_segments(self.config.wal_dir):
            if number not in retired:
                continue
            logger.info(f"Completing interrupted retirement of segment {number}")
            self._dispose_segment(path)

    def _dispose_segment(self, path: Path) -> None:
        if self.config.archive_expired:
            archive_segment(path, self.config.archive_dir)
        else:
            path.unlink(missing_ok=True)

    # =========================================================================
    # Checkpoint and replay
    # =========================================================================

    def _restore_checkpoint(self, segments: list[tuple[int, Path]]) -> bool:
        path = self.config.index_path
        try:
            data = read_json(path)
        except (OSError, ValueError):
            logger.warning(f"Index checkpoint {path} unreadable; replaying full log")
            return False
        if data is None:
            return False

        try:
            if data.get("version") != INDEX_VERSION:
                raise ValueError(f"index version {data.get('version')!r}")
            log_end = (int(data["log_end"][0]), int(data["log_end"][1]))
            recorded = {int(k): int(v) for k, v in data["segments"].items()}
            entries = [IndexEntry.from_row(row) for row in data["entries"]]
            first_position = int(data["first_position"])
            next_position = int(data["next_position"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Index checkpoint malformed ({e}); replaying full log")
            return False

        sizes = {n: p.stat().st_size for n, p in segments}
        for number, size in recorded.items():
            if sizes.get(number, -1) < size:
                logger.warning(
                    f"Index checkpoint ahead of log at segment {number}; replaying full log"
                )
                return False
        for number in sizes:
            if number <= log_end[0] and number not in recorded:
                logger.warning(
                    f"Segment {number} missing from index checkpoint; replaying full log"
                )
                return False

        with self._index_lock:
            self._reset_index()
            for entry in entries:
                self._index(entry)
            if not entries:
                self._first_position = first_position
            self._next_position = next_position
            for number, size in recorded.items():
                info = self._segments.setdefault(number, _SegmentInfo())
                info.bytes = max(info.bytes, size)
            self._log_end = log_end
        logger.debug(
            f"Restored index checkpoint with {len(entries)} entries",
            extra={"log_end": log_end},
        )
        return True

    def _decode(self, record: LogRecord) -> CommandEvent:
        try:
            return CommandEvent.model_validate_json(record.payload)
        except ValidationError as e:
            raise CorruptionError(
                f"Undecodable record at segment {record.segment} offset {record.offset}",
                details={"segment": record.segment, "offset": record.offset},
            ) from e

    def _replay(self, segments: list[tuple[int, Path]]) -> None:
        start_segment, start_offset = self._log_end
        replayed = 0
        for i, (number, path) in enumerate(segments):
            if number < start_segment:
                continue
            offset = start_offset if number == start_segment else 0
            scan = scan_segment(path, offset)
            newest = i == len(segments) - 1

            if not scan.clean:
                if scan.torn and newest:
                    discarded = scan.file_size - scan.valid_end
                    logger.warning(
                        f"Discarding torn record tail of {discarded} bytes",
                        extra={"segment": number, "valid_end": scan.valid_end},
                    )
                    truncate_segment(path, scan.valid_end)
                    self.recovered_torn_bytes += discarded
                else:
                    raise CorruptionError(
                        f"Invalid record in segment {number} at offset {scan.valid_end}",
                        details={"segment": number, "offset": scan.valid_end},
                    )

            with self._index_lock:
                for record in scan.records:
                    event = self._decode(record)
                    if event.idempotency_key in self._key_positions:
                        logger.warning(
                            f"Skipping duplicate record for {event.idempotency_key}",
                            extra={"segment": number, "offset": record.offset},
                        )
                        continue
                    self._index(self._entry_for(self._next_position, record, event))
                    replayed += 1
                info = self._segments.setdefault(number, _SegmentInfo())
                info.bytes = scan.valid_end
                self._log_end = max(self._log_end, (number, scan.valid_end))

        if replayed:
            logger.info(f"Replayed {replayed} log records into the index")

    @staticmethod
    def _entry_for(position: int, record: LogRecord, event: CommandEvent) -> IndexEntry:
        return IndexEntry(
            position=position,
            started_at_ms=event.started_at_ms,
            segment=record.segment,
            offset=record.offset,
            length=record.length,
            command=event.command,
            cwd=event.cwd,
            session_id=event.session_id,
            sequence=event.sequence,
        )

    def checkpoint(self) -> None:
        """Write ``index.json`` covering everything appended so far."""
        with self._write_lock:
            if self._writer is not None:
                self._writer.sync()
                self._last_sync = time.monotonic()
            with self._index_lock:
                data = {
                    "version": INDEX_VERSION,
                    "first_position": self._first_position,
                    "next_position": self._next_position,
                    "log_end": list(self._log_end),
                    "segments": {str(n): info.bytes for n, info in self._segments.items()},
                    "entries": [entry.as_row() for entry in self._entries],
                }
            try:
                write_json_atomic(self.config.index_path, data)
            except OSError as e:
                raise StorageIOError(f"Failed to write index checkpoint: {e}") from e
        logger.debug(f"Index checkpoint written at position {data['next_position']}")

    # =========================================================================
    # Write path
    # =========================================================================

    def _require_writer(self) -> SegmentWriter:
        if self._writer is None:
            raise StorageIOError("Event store is not open")
        return self._writer

    def append(self, event: CommandEvent) -> AppendResult:
        """Persist one event and index it.

        Returns once the record is written (and fsynced under
        sync-each-write). Appending an idempotency key that is already
        stored is a no-op reported through ``AppendResult.duplicate``.

        Raises:
            StorageIOError: The write failed; nothing was indexed.
        """
        payload = event.model_dump_json().encode("utf-8")
        with self._write_lock:
            writer = self._require_writer()
            with self._index_lock:
                existing = self._key_positions.get(event.idempotency_key)
                if existing is not None:
                    entry = self._entry_at(existing)
                    return AppendResult(
                        position=existing,
                        segment=entry.segment if entry else -1,
                        offset=entry.offset if entry else -1,
                        duplicate=True,
                    )
            framed = HEADER.size + len(payload)
            if writer.size > 0 and writer.size + framed > self.config.segment_max_bytes:
                writer = self._rotate()
            record = writer.append(payload)
            self._maybe_sync_locked()
            with self._index_lock:
                entry = self._entry_for(self._next_position, record, event)
                self._index(entry)
        return AppendResult(entry.position, record.segment, record.offset)

    def _rotate(self) -> SegmentWriter:
        old = self._require_writer()
        old.close()
        sync_each = self.config.durability is DurabilityPolicy.SYNC_EACH_WRITE
        self._writer = self._new_segment(sync_each)
        with self._index_lock:
            self._segments.setdefault(self._writer.number, _SegmentInfo())
        logger.info(
            f"Rotated log segment {old.number} -> {self._writer.number}",
            extra={"sealed_bytes": old.size},
        )
        return self._writer

    def _maybe_sync_locked(self) -> None:
        if self.config.durability is not DurabilityPolicy.BATCHED_INTERVAL:
            return
        if time.monotonic() - self._last_sync >= self.config.sync_interval_seconds:
            self._require_writer().sync()
            self._last_sync = time.monotonic()

    def sync(self) -> None:
        """Force buffered appends to stable storage."""
        with self._write_lock:
            if self._writer is not None:
                self._writer.sync()
                self._last_sync = time.monotonic()

    def sync_if_due(self) -> None:
        """Periodic hook for the batched-interval policy."""
        with self._write_lock:
            if self._writer is not None and self._writer.dirty:
                self._maybe_sync_locked()

    # =========================================================================
    # Read path
    # =========================================================================

    def _load(self, entries: list[IndexEntry]) -> list[CommandEvent]:
        return [event for _, event in self._load_pairs(entries)]

    def _load_pairs(
        self, entries: list[IndexEntry]
    ) -> list[tuple[IndexEntry, CommandEvent]]:
        """Read events for index entries, skipping segments retired meanwhile."""
        events: list[tuple[IndexEntry, CommandEvent]] = []
        handles: dict[int, BinaryIO | None] = {}
        try:
            for entry in entries:
                if entry.segment not in handles:
                    path = self.config.wal_dir / segment_name(entry.segment)
                    try:
                        handles[entry.segment] = path.open("rb")
                    except FileNotFoundError:
                        handles[entry.segment] = None
                fh = handles[entry.segment]
                if fh is None:
                    continue
                fh.seek(entry.offset)
                where = f"segment {entry.segment} offset {entry.offset}"
                try:
                    payload = decode_frame(fh.read(entry.length), where)
                    events.append((entry, CommandEvent.model_validate_json(payload)))
                except (ValueError, ValidationError) as e:
                    raise CorruptionError(f"Unreadable record at {where}: {e}") from e
        finally:
            for fh in handles.values():
                if fh is not None:
                    fh.close()
        return events

    @property
    def count(self) -> int:
        with self._index_lock:
            return len(self._entries)

    @property
    def next_position(self) -> int:
        with self._index_lock:
            return self._next_position

    def contains(self, key: tuple[str, int]) -> bool:
        with self._index_lock:
            return key in self._key_positions

    def get(self, position: int) -> CommandEvent | None:
        with self._index_lock:
            entry = self._entry_at(position)
        if entry is None:
            return None
        events = self._load([entry])
        return events[0] if events else None

    def range(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        *,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[CommandEvent]:
        """Events with ``start <= started_at < end``, ordered by start time."""
        with self._index_lock:
            lo, hi = self._time_bounds(start, end)
            window = self._by_time[lo:hi]
            if newest_first:
                window.reverse()
            if limit is not None:
                window = window[:limit]
            entries = [self._entries[p - self._first_position] for _, p in window]
        return self._load(entries)

    def count_range(self, start: datetime | None = None, end: datetime | None = None) -> int:
        with self._index_lock:
            lo, hi = self._time_bounds(start, end)
            return hi - lo

    def _time_bounds(self, start: datetime | None, end: datetime | None) -> tuple[int, int]:
        lo = 0 if start is None else bisect_left(self._by_time, (to_epoch_ms(start), -1))
        hi = (
            len(self._by_time)
            if end is None
            else bisect_left(self._by_time, (to_epoch_ms(end), -1))
        )
        return lo, max(lo, hi)

    def page(
        self, offset: int = 0, limit: int = 50, *, newest_first: bool = True
    ) -> tuple[list[CommandEvent], int]:
        """One page of the time-ordered history and the total event count."""
        with self._index_lock:
            total = len(self._by_time)
            if newest_first:
                hi = max(0, total - offset)
                lo = max(0, hi - limit)
                window = self._by_time[lo:hi][::-1]
            else:
                window = self._by_time[offset : offset + limit]
            entries = [self._entries[p - self._first_position] for _, p in window]
        return self._load(entries), total

    def by_command(
        self, command: str, *, prefix: bool = False, limit: int | None = None
    ) -> list[CommandEvent]:
        """Events whose command equals (or starts with) ``command``, oldest first."""
        with self._index_lock:
            entries = self._lookup(self._by_command, self._command_keys, command, prefix, limit)
        return self._load(entries)

    def by_directory(
        self, directory: str, *, prefix: bool = False, limit: int | None = None
    ) -> list[CommandEvent]:
        """Events whose cwd equals (or starts with) ``directory``, oldest first."""
        with self._index_lock:
            entries = self._lookup(
                self._by_directory, self._directory_keys, directory, prefix, limit
            )
        return self._load(entries)

    def _lookup(
        self,
        table: dict[str, list[int]],
        keys: list[str],
        value: str,
        prefix: bool,
        limit: int | None,
    ) -> list[IndexEntry]:
        if prefix:
            positions: list[int] = []
            i = bisect_left(keys, value)
            while i < len(keys) and keys[i].startswith(value):
                positions.extend(table[keys[i]])
                i += 1
            positions.sort()
        else:
            positions = list(table.get(value, ()))
        if limit is not None:
            positions = positions[:limit]
        return [self._entries[p - self._first_position] for p in positions]

    def session(self, session_id: str) -> list[CommandEvent]:
        """All stored events of one session, ordered by sequence number."""
        with self._index_lock:
            entries = [
                self._entries[p - self._first_position]
                for _, p in self._by_session.get(session_id, ())
            ]
        return self._load(entries)

    def top_commands(self, k: int) -> list[tuple[str, int]]:
        """The k most frequent commands over live events, ties by command text."""
        with self._index_lock:
            return _top(self._command_counts, k)

    def top_directories(self, k: int) -> list[tuple[str, int]]:
        with self._index_lock:
            return _top(self._directory_counts, k)

    def iter_events(
        self,
        start: int | None = None,
        upto: int | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[tuple[int, CommandEvent]]:
        """Yield ``(position, event)`` in log order for ``start <= position < upto``.

        ``upto`` defaults to the next position at call time, so the scan sees
        a fixed snapshot even while appends continue. Between batches the
        ``cancel`` event is checked.

        Raises:
            ScanCancelledError: ``cancel`` was set before the scan finished.
        """
        with self._index_lock:
            position = self._first_position if start is None else start
            end = self._next_position if upto is None else upto

        while position < end:
            if cancel is not None and cancel.is_set():
                raise ScanCancelledError(
                    f"Scan cancelled at position {position}",
                    details={"position": position, "end": end},
                )
            with self._index_lock:
                position = max(position, self._first_position)
                i = position - self._first_position
                batch = self._entries[i : i + min(_SCAN_BATCH, end - position)]
            if not batch:
                break
            for entry, event in self._load_pairs(batch):
                yield entry.position, event
            position = batch[-1].position + 1

    def events_since(self, position: int) -> Iterator[tuple[int, CommandEvent]]:
        return self.iter_events(start=position)

    # =========================================================================
    # Retention
    # =========================================================================

    def expired_segments(self, now: datetime) -> list[int]:
        """Oldest sealed segments that fall outside the retention thresholds."""
        cfg = self.config
        if cfg.retention_max_age_days is None and cfg.retention_max_bytes is None:
            return []
        active = self._writer.number if self._writer is not None else None
        cutoff_ms = None
        if cfg.retention_max_age_days is not None:
            cutoff_ms = to_epoch_ms(now - timedelta(days=cfg.retention_max_age_days))

        with self._index_lock:
            infos = sorted(self._segments.items())
            total = sum(info.bytes for _, info in infos)

        expired: list[int] = []
        for number, info in infos:
            if number == active:
                break
            too_old = cutoff_ms is not None and (
                info.max_started_ms is None or info.max_started_ms < cutoff_ms
            )
            too_big = cfg.retention_max_bytes is not None and total > cfg.retention_max_bytes
            if not (too_old or too_big):
                break
            expired.append(number)
            total -= info.bytes
        return expired

    def read_segments(self, numbers: Iterable[int]) -> list[CommandEvent]:
        wanted = set(numbers)
        with self._index_lock:
            entries = [e for e in self._entries if e.segment in wanted]
        return self._load(entries)

    def retire_segments(self, numbers: Iterable[int]) -> int:
        """Archive (or delete) the given oldest segments and drop them from the index.

        The caller must already have folded their events into the baseline.

        Returns:
            Number of events removed from the index.

        Raises:
            ValueError: The segments are not the oldest sealed ones.
        """
        wanted = sorted(set(numbers))
        if not wanted:
            return 0
        with self._write_lock:
            with self._index_lock:
                live = sorted(self._segments)
            active = self._writer.number if self._writer is not None else None
            if active in wanted or wanted != live[: len(wanted)]:
                raise ValueError(f"Segments {wanted} are not the oldest sealed segments")

            for number in wanted:
                path = self.config.wal_dir / segment_name(number)
                if path.exists():
                    self._dispose_segment(path)

            retired = set(wanted)
            with self._index_lock:
                remaining = [e for e in self._entries if e.segment not in retired]
                removed = len(self._entries) - len(remaining)
                next_position, log_end = self._next_position, self._log_end
                segments = {n: i for n, i in self._segments.items() if n not in retired}
                self._reset_index()
                for entry in remaining:
                    self._index(entry)
                if not remaining:
                    self._first_position = next_position
                self._next_position = next_position
                self._log_end = log_end
                for number, info in segments.items():
                    self._segments.setdefault(number, info)

        logger.info(
            f"Retired {len(wanted)} segments holding {removed} events",
            extra={"segments": wanted, "archived": self.config.archive_expired},
        )
        self.checkpoint()
        return removed

    def stats(self) -> StoreStats:
        with self._index_lock:
            return StoreStats(
                events=len(self._entries),
                segments=len(self._segments),
                live_bytes=sum(info.bytes for info in self._segments.values()),
                first_position=self._first_position,
                next_position=self._next_position,
                recovered_torn_bytes=self.recovered_torn_bytes,
            )


def _top(counts: Counter[str], k: int) -> list[tuple[str, int]]:
    if k <= 0:
        return []
    return heapq.nsmallest(k, counts.items(), key=lambda kv: (-kv[1], kv[0]))


__all__: list[str] = [
    "AppendResult",
    "DurableEventStore",
    "IndexEntry",
    "SCHEMA_FORMAT",
    "SCHEMA_VERSION",
    "StoreStats",
    "to_epoch_ms",
]
