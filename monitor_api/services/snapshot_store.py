"""Snapshot store — latest DowntimeReport per client, replaced atomically on disk.

A report is written in full to ``downtime_report.json.tmp`` and then moved onto
``downtime_report.json`` with ``os.replace``, so readers only ever see a whole
old or a whole new document. Each client has its own lock: writers for
different clients never wait on each other.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog
from pydantic import ValidationError

from monitor_api.config import settings
from monitor_api.core.exceptions import PersistenceError
from monitor_api.schemas.downtime import DowntimeReport

logger = structlog.get_logger()

REPORT_FILE = "downtime_report.json"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def change_token(report: DowntimeReport) -> str:
    """Opaque ETag-style token derived from ``generated_at`` (microsecond resolution)."""
    generated = report.generated_at
    if generated.tzinfo is None:
        generated = generated.replace(tzinfo=timezone.utc)
    return f'"{(generated - _EPOCH) // timedelta(microseconds=1)}"'


class SnapshotStore:
    def __init__(self, base_dir: str | Path | None = None):
        self._base = Path(base_dir or settings.monitor_clients_dir)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, tenant_id: str) -> asyncio.Lock:
        return self._locks.setdefault(tenant_id.casefold(), asyncio.Lock())

    def report_path(self, tenant_id: str) -> Path:
        return self._base / tenant_id / REPORT_FILE

    async def put(self, tenant_id: str, report: DowntimeReport) -> None:
        """Persist ``report`` as the client's current snapshot.

        Raises PersistenceError if the write or the rename fails; the previous
        snapshot is left untouched in that case.
        """
        document = report.model_dump_json(indent=2)
        async with self._lock(tenant_id):
            await asyncio.to_thread(self._write_atomic, self.report_path(tenant_id), document)
        logger.debug("snapshot_saved", client_id=tenant_id, bytes=len(document))

    async def get(self, tenant_id: str) -> DowntimeReport | None:
        """Return the latest snapshot, or None if none has been written yet."""
        path = self.report_path(tenant_id)
        async with self._lock(tenant_id):
            document = await asyncio.to_thread(self._read, path)
        if document is None:
            logger.debug("snapshot_absent", client_id=tenant_id)
            return None
        try:
            return DowntimeReport.model_validate_json(document)
        except ValidationError as e:
            logger.error("snapshot_unreadable", client_id=tenant_id, error=str(e))
            return None

    def cleanup_orphaned_tmp(self) -> int:
        """Delete staging files left behind by interrupted writes. Returns the count removed."""
        if not self._base.is_dir():
            return 0
        removed = 0
        for tmp in self._base.rglob("*.tmp"):
            try:
                tmp.unlink()
                removed += 1
            except OSError as e:
                logger.warning("orphaned_tmp_remove_failed", path=str(tmp), error=str(e))
        if removed:
            logger.info("orphaned_tmp_cleaned", count=removed)
        return removed

    @staticmethod
    def _read(path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    @staticmethod
    def _write_atomic(path: Path, document: str) -> None:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(document)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error("snapshot_write_failed", path=str(path), error=str(e))
            tmp_path.unlink(missing_ok=True)
            raise PersistenceError(f"Failed to save report to {path}: {e}") from e
