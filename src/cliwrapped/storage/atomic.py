# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Crash-safe replacement of small JSON files (index checkpoint, baseline, schema marker)."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from cliwrapped.storage.wal import fsync_dir


def write_json_atomic(path: Path, data: Any) -> None:
    """Write ``data`` to a temp file, fsync it, then rename over ``path``.

    Readers see either the old file or the new one, never a partial write.
    """
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"))
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(tmp, path)
    fsync_dir(path.parent)


def read_json(path: Path) -> Any | None:
    """Load a JSON file, or None if it does not exist.

    Raises:
        ValueError: The file exists but is not valid JSON.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return json.loads(text)


__all__: list[str] = ["read_json", "write_json_atomic"]
