"""Snapshot Store — JSON persistence so the engine resumes correctly after restart.

Non-blocking, queue-based: ``request_save`` hands the latest snapshot to a
background writer thread and returns immediately. Only the newest pending
snapshot is written; older ones are superseded. Writes go to a temp file
and are renamed into place.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class SnapshotStore:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._cond = threading.Condition()
        self._pending: dict[str, Any] | None = None
        self._writing = False
        self._closed = False
        self._thread: threading.Thread | None = None
        self._writes = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def writes(self) -> int:
        return self._writes

    def request_save(self, payload: dict[str, Any]) -> None:
        """Queue a snapshot for the writer thread (latest wins)."""
        with self._cond:
            if self._closed:
                logger.warning("SnapshotStore closed, dropping snapshot")
                return
            self._pending = payload
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="battlecard-snapshot", daemon=True
                )
                self._thread.start()
            self._cond.notify_all()

    def save_now(self, payload: dict[str, Any]) -> None:
        """Write synchronously."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        document = {"version": SNAPSHOT_VERSION, **payload}
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        self._writes += 1

    def load(self) -> dict[str, Any] | None:
        """Read the last snapshot, or None when there is none yet."""
        if not self._path.exists():
            return None
        with open(self._path, encoding="utf-8") as f:
            document = json.load(f)
        version = document.pop("version", None)
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version {version!r} in {self._path}")
        return document

    def flush(self, timeout: float = 5.0) -> bool:
        """Block until queued snapshots are on disk. False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._pending is None and not self._writing, timeout=timeout
            )

    def close(self, timeout: float = 5.0) -> None:
        """Flush and stop the writer thread."""
        self.flush(timeout)
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending is not None or self._closed)
                if self._pending is None:
                    return
                payload, self._pending = self._pending, None
                self._writing = True
            try:
                self.save_now(payload)
            except OSError:
                logger.exception("Failed to write snapshot to %s", self._path)
            finally:
                with self._cond:
                    self._writing = False
                    self._cond.notify_all()
