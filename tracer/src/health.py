"""
Health file writer for the acquisition daemon.

Writes a JSON health file with four fields:
- last_sample_ts: ISO timestamp of the most recent real (non-placeholder) sample.
- last_flush_ts: ISO timestamp of the most recent batch commit.
- buffered_count: Number of samples waiting in the persistence buffer.
- reconnect_count: Number of forced reconnects since start.

The file is rewritten on every state change so an external monitor can
check liveness without talking to the process.

CHANGELOG:
- 2026-10-19: Track reconnects and buffered samples instead of uploads
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes acquisition health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_sample_ts: str | None = None
        self._last_flush_ts: str | None = None
        self._buffered_count: int = 0
        self._reconnect_count: int = 0

    def record_sample(self, buffered_count: int) -> None:
        """Record a real sample and the current buffer depth."""
        self._last_sample_ts = datetime.now(tz=UTC).isoformat()
        self._buffered_count = buffered_count
        self._write()

    def record_flush(self) -> None:
        """Record a batch commit (the buffer is empty afterwards)."""
        self._last_flush_ts = datetime.now(tz=UTC).isoformat()
        self._buffered_count = 0
        self._write()

    def record_reconnect(self, reconnect_count: int) -> None:
        """Update the reconnect counter."""
        self._reconnect_count = reconnect_count
        self._write()

    def _write(self) -> None:
        data = {
            "last_sample_ts": self._last_sample_ts,
            "last_flush_ts": self._last_flush_ts,
            "buffered_count": self._buffered_count,
            "reconnect_count": self._reconnect_count,
        }
        self.path.write_text(json.dumps(data))
