"""
Durable registry snapshot.

The registry's query definitions are written to one JSON file after every
add and remove, and read back once at startup so the schedules survive a
restart.  The file is rewritten wholesale, never patched.

File format::

    [
      ["q1", {"query": {"name": "q1", "db": "d1", "query": "SELECT 1 AS v",
                        "period": {"minute": [0]}, "added": "2026-...+00:00"}}],
      ...
    ]

Schedule handles and buffered results are never written.

Guardrails:
    ❌ Writing the target file in place (a crash mid-write corrupts it)
    ✅ Write a sibling temp file, fsync, then ``Path.replace`` onto the target

Tags:
    persistence, snapshot, json, atomic-write, turntable
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from turntable.core.errors import SnapshotError
from turntable.core.logging import get_logger
from turntable.core.models import QueryDefinition

log = get_logger(__name__)


def dump_snapshot(definitions: Iterable[QueryDefinition]) -> str:
    return json.dumps(
        [[d.name, {"query": d.to_dict()}] for d in definitions],
        indent=2,
    )


def load_snapshot(text: str) -> list[dict[str, Any]]:
    """Parse snapshot text into raw definition mappings.

    Raises:
        SnapshotError: if the text is not a list of ``[name, {"query": ...}]``
    """
    try:
        pairs = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Snapshot is not valid JSON: {e.msg}", cause=e) from e
    if not isinstance(pairs, list):
        raise SnapshotError("Snapshot must be a JSON list")

    definitions: list[dict[str, Any]] = []
    for pair in pairs:
        try:
            name, body = pair
            data = dict(body["query"])
        except (TypeError, ValueError, KeyError) as e:
            raise SnapshotError(f"Malformed snapshot entry: {pair!r}", cause=e) from e
        data.setdefault("name", name)
        definitions.append(data)
    return definitions


class SnapshotStore:
    """Reads and atomically rewrites the registry file at ``path``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> list[dict[str, Any]]:
        """Raw definition mappings from the file; ``[]`` when it does not exist.

        Entries are returned unparsed so the registry can skip a single
        invalid definition without losing the rest.
        """
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise SnapshotError(f"Cannot read {self.path}: {e}", cause=e) from e
        return load_snapshot(text)

    def write(self, definitions: Iterable[QueryDefinition]) -> None:
        """Replace the file with a snapshot of ``definitions``."""
        payload = dump_snapshot(definitions)
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
            tmp = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                tmp.replace(self.path)
            except BaseException:
                tmp.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise SnapshotError(f"Cannot write {self.path}: {e}", cause=e) from e
        log.debug("snapshot_written", path=str(self.path))
