# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Write-ahead log segments.

Record framing::

    +----------------+----------------+----------------------+
    | length (u32 BE)| crc32 (u32 BE) | payload (length B)   |
    +----------------+----------------+----------------------+

The checksum covers the big-endian length followed by the payload, so a
damaged length field fails verification like a damaged payload does. The
payload is the UTF-8 JSON of one CommandEvent. A zero length is never
written, so a zero-filled region (file extended by the filesystem but not
yet written) reads as invalid.

Segment files are named ``segment-NNNNNNNN.log`` and only the newest one is
ever appended to. A scan stops at the first invalid record and reports
whether the invalid region looks like a torn write (header or payload cut
short with nothing valid after it, or trailing zeros) or like corruption
(a bad record followed by a checksum-valid one).
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path

from cliwrapped.lib.errors import StorageIOError

logger = logging.getLogger(__name__)

HEADER = struct.Struct(">II")
LENGTH = struct.Struct(">I")
SEGMENT_PREFIX = "segment-"
SEGMENT_SUFFIX = ".log"
ARCHIVE_SUFFIX = ".log.gz"
MAX_RECORD_BYTES = 16 * 1024 * 1024


def segment_name(number: int) -> str:
    return f"{SEGMENT_PREFIX}{number:08d}{SEGMENT_SUFFIX}"


def segment_number(path: Path) -> int:
    stem = path.name.removeprefix(SEGMENT_PREFIX).split(".", 1)[0]
    return int(stem)


def list_segments(directory: Path) -> list[tuple[int, Path]]:
    """Return (number, path) for every segment in ``directory``, oldest first."""
    if not directory.exists():
        return []
    found = []
    for path in directory.glob(f"{SEGMENT_PREFIX}*{SEGMENT_SUFFIX}"):
        try:
            found.append((segment_number(path), path))
        except ValueError:
            logger.warning(f"Ignoring unrecognized file in log directory: {path}")
    return sorted(found)


def list_archives(directory: Path) -> list[tuple[int, Path]]:
    """Return (number, path) for every archived segment, oldest first."""
    if not directory.exists():
        return []
    found = []
    for path in directory.glob(f"{SEGMENT_PREFIX}*{ARCHIVE_SUFFIX}"):
        try:
            found.append((segment_number(path), path))
        except ValueError:
            continue
    return sorted(found)


def checksum(length: int, payload: bytes) -> int:
    return zlib.crc32(payload, zlib.crc32(LENGTH.pack(length)))


def encode_record(payload: bytes) -> bytes:
    if not payload:
        raise ValueError("Log records must not be empty")
    if len(payload) > MAX_RECORD_BYTES:
        raise ValueError(f"Log record exceeds {MAX_RECORD_BYTES} bytes")
    return HEADER.pack(len(payload), checksum(len(payload), payload)) + payload


@dataclass(frozen=True)
class LogRecord:
    """One decoded record and where it lives."""

    segment: int
    offset: int
    payload: bytes

    @property
    def length(self) -> int:
        return HEADER.size + len(self.payload)

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass
class SegmentScan:
    """Result of reading a segment from some offset to its end."""

    segment: int
    records: list[LogRecord] = field(default_factory=list)
    valid_end: int = 0
    file_size: int = 0
    torn: bool = False

    @property
    def clean(self) -> bool:
        return self.valid_end == self.file_size

    @property
    def corrupt(self) -> bool:
        return not self.clean and not self.torn


def valid_frame_after(data: bytes, start: int) -> bool:
    """Whether a complete, checksum-valid record starts at or after ``start``."""
    for offset in range(start, len(data) - HEADER.size):
        length, crc = HEADER.unpack_from(data, offset)
        if length == 0 or length > MAX_RECORD_BYTES:
            continue
        end = offset + HEADER.size + length
        if end > len(data):
            continue
        if checksum(length, data[offset + HEADER.size : end]) == crc:
            return True
    return False


def scan_segment(path: Path, start_offset: int = 0) -> SegmentScan:
    """Read every valid record of a segment starting at ``start_offset``."""
    number = segment_number(path)
    data = path.read_bytes()
    scan = SegmentScan(segment=number, valid_end=start_offset, file_size=len(data))
    offset = start_offset

    while offset < len(data):
        if offset + HEADER.size > len(data):
            scan.torn = True
            break
        length, crc = HEADER.unpack_from(data, offset)
        end = offset + HEADER.size + length
        if length == 0 or length > MAX_RECORD_BYTES:
            scan.torn = not any(data[offset:])
            break
        if end > len(data):
            scan.torn = not valid_frame_after(data, offset + 1)
            break
        payload = data[offset + HEADER.size : end]
        if checksum(length, payload) != crc:
            scan.torn = not valid_frame_after(data, offset + 1)
            break
        scan.records.append(LogRecord(number, offset, payload))
        offset = end
        scan.valid_end = offset

    return scan


def decode_frame(data: bytes, where: str) -> bytes:
    """Verify one framed record read from a known location.

    Raises:
        ValueError: The frame is short or fails its checksum.
    """
    if len(data) < HEADER.size:
        raise ValueError(f"Short read at {where}")
    size, crc = HEADER.unpack_from(data, 0)
    payload = data[HEADER.size :]
    if size != len(payload) or checksum(size, payload) != crc:
        raise ValueError(f"Checksum mismatch at {where}")
    return payload


def truncate_segment(path: Path, size: int) -> None:
    with path.open("r+b") as fh:
        fh.truncate(size)
        fh.flush()
        os.fsync(fh.fileno())


def fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("Directory fsync not supported", exc_info=True)
    finally:
        os.close(fd)


class SegmentWriter:
    """Appends framed records to one segment file.

    Not thread-safe: the event store serializes all calls under its
    single-writer lock.
    """

    def __init__(self, path: Path, sync_each_write: bool) -> None:
        self.path = path
        self.number = segment_number(path)
        self._sync_each_write = sync_each_write
        created = not path.exists()
        self._fh = path.open("ab")
        self._size = self._fh.tell()
        self._dirty = False
        if created:
            fsync_dir(path.parent)

    @property
    def size(self) -> int:
        return self._size

    @property
    def dirty(self) -> bool:
        return self._dirty

    def append(self, payload: bytes) -> LogRecord:
        """Write one record; fsync it too under sync-each-write.

        On failure the segment is cut back to its previous length so a
        half-written record is never left in the middle of the log.

        Raises:
            StorageIOError: The write, flush or fsync failed.
        """
        frame = encode_record(payload)
        offset = self._size
        try:
            self._fh.write(frame)
            self._fh.flush()
            if self._sync_each_write:
                os.fsync(self._fh.fileno())
            else:
                self._dirty = True
        except OSError as e:
            self._rollback(offset)
            raise StorageIOError(
                f"Failed to append to {self.path.name}: {e}",
                details={"segment": self.number, "offset": offset},
            ) from e
        self._size = offset + len(frame)
        return LogRecord(self.number, offset, payload)

    def _rollback(self, offset: int) -> None:
        try:
            self._fh.seek(offset)
            self._fh.truncate(offset)
            self._fh.flush()
        except OSError:
            logger.exception(f"Failed to roll back partial write in {self.path}")

    def sync(self) -> None:
        if not self._dirty:
            return
        try:
            self._fh.flush()
            os.fsync(self._fh.fileno())
        except OSError as e:
            raise StorageIOError(f"Failed to sync {self.path.name}: {e}") from e
        self._dirty = False

    def close(self) -> None:
        try:
            self.sync()
        finally:
            self._fh.close()


def archive_segment(path: Path, archive_dir: Path) -> Path:
    """Gzip a sealed segment into ``archive_dir`` and remove the original."""
    archive_dir.mkdir(parents=True, exist_ok=True)
    target = archive_dir / (path.name.removesuffix(SEGMENT_SUFFIX) + ARCHIVE_SUFFIX)
    tmp = target.with_name(target.name + ".tmp")
    with path.open("rb") as src, gzip.open(tmp, "wb") as dst:
        shutil.copyfileobj(src, dst)
    with tmp.open("rb") as fh:
        os.fsync(fh.fileno())
    os.replace(tmp, target)
    fsync_dir(archive_dir)
    path.unlink()
    fsync_dir(path.parent)
    return target


__all__: list[str] = [
    "HEADER",
    "LENGTH",
    "LogRecord",
    "SegmentScan",
    "SegmentWriter",
    "archive_segment",
    "checksum",
    "decode_frame",
    "encode_record",
    "fsync_dir",
    "list_archives",
    "list_segments",
    "scan_segment",
    "segment_name",
    "segment_number",
    "truncate_segment",
    "valid_frame_after",
]
