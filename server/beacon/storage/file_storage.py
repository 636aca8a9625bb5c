"""File-based storage implementation.

Stores visit records as JSON Lines in a single append-only log, one record
per line, in arrival order:

    {"ip":"203.0.113.5","userAgent":"...","path":"/home","referer":"","timestamp":1700000000,"geo":null}

Reads are a full scan of the log followed by an in-memory filter. That keeps
the format trivially inspectable and is fast enough for the traffic a single
beacon server sees; there is no index and no compaction.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import structlog

from beacon.core.errors import StoreError
from beacon.core.models import VisitRecord

log = structlog.get_logger()

# Upper bound on rows returned by a single query.
DEFAULT_MAX_LIMIT = 2000


class FileVisitStore:
    """VisitStore backed by an append-only JSON Lines file."""

    def __init__(self, path: str | Path, max_limit: int = DEFAULT_MAX_LIMIT) -> None:
        self._path = Path(path)
        self._max_limit = max_limit
        self._write_lock = asyncio.Lock()

        # Failing here (unwritable directory, ...) aborts startup.
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.touch(exist_ok=True)
        self._repair_tail()

    @property
    def path(self) -> Path:
        return self._path

    def _repair_tail(self) -> None:
        """Terminate a partially written last line left by a crash.

        Without this, the next append would be glued onto the broken line
        and both records would be unreadable.
        """
        with open(self._path, "rb+") as f:
            f.seek(0, os.SEEK_END)
            if f.tell() == 0:
                return
            f.seek(-1, os.SEEK_END)
            if f.read(1) != b"\n":
                f.write(b"\n")
                log.warning("visit_log_tail_repaired", path=str(self._path))

    def _serialize_record(self, record: VisitRecord) -> bytes:
        payload = json.dumps(record.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return payload.encode("utf-8", "replace") + b"\n"

    def _write_line(self, line: bytes) -> None:
        with open(self._path, "ab") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

    def _read_records(self) -> list[VisitRecord]:
        """Parse the whole log in arrival order, skipping bad lines."""
        records: list[VisitRecord] = []
        with open(self._path, encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(VisitRecord.from_dict(json.loads(line)))
                except (ValueError, TypeError, KeyError):
                    log.warning("visit_line_skipped", path=str(self._path), line=lineno)
        return records

    async def append(self, record: VisitRecord) -> None:
        """Durably append one record. Raises StoreError on I/O failure."""
        line = self._serialize_record(record)
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._write_line, line)
            except OSError as exc:
                raise StoreError(f"append to {self._path} failed: {exc}") from exc
        log.debug("visit_written", path=str(self._path), timestamp=record.timestamp)

    async def query(self, term: str = "", limit: int = 200, offset: int = 0) -> list[VisitRecord]:
        """Return matching records, newest first.

        ``term`` is a case-insensitive substring tested against
        ``VisitRecord.search_text()``. ``offset`` is applied after filtering,
        so pages can shift while new visits are being appended.
        """
        limit = max(1, min(limit, self._max_limit))
        offset = max(0, offset)
        needle = (term or "").lower()

        try:
            records = await asyncio.to_thread(self._read_records)
        except OSError:
            log.error("visit_log_read_failed", path=str(self._path), exc_info=True)
            return []

        rows: list[VisitRecord] = []
        skipped = 0
        for record in reversed(records):
            if needle and needle not in record.search_text():
                continue
            if skipped < offset:
                skipped += 1
                continue
            rows.append(record)
            if len(rows) >= limit:
                break
        return rows

    async def count(self) -> int:
        try:
            records = await asyncio.to_thread(self._read_records)
        except OSError:
            log.error("visit_log_read_failed", path=str(self._path), exc_info=True)
            return 0
        return len(records)
