"""Incident journal — per-client append-only audit log of incident open/resolve events.

One JSON object per line in ``<client>/downtime.log``::

    {"kind": "opened", "service": "db01", "start": 1700000000, "recorded_at": "..."}
    {"kind": "resolved", "service": "db01", "start": 1700000000, "end": 1700000125,
     "duration_seconds": 125, "recorded_at": "..."}

Lines that do not parse as a canonical entry (older free-text formats) are
dropped the next time the file is rewritten. The journal is an audit trail;
reports are always served from the snapshot store.
"""

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, ValidationError

from monitor_api.config import settings
from monitor_api.schemas.downtime import Incident

logger = structlog.get_logger()

JOURNAL_FILE = "downtime.log"


class JournalEntry(BaseModel):
    kind: Literal["opened", "resolved"]
    service: str
    start: int
    end: int | None = None
    duration_seconds: int | None = None
    recorded_at: datetime

    def key(self) -> tuple[str, str, int]:
        return self.kind, self.service, self.start


def _parse_lines(lines: list[str]) -> tuple[list[JournalEntry], int]:
    """Parse canonical entries; returns (entries, number of discarded lines)."""
    entries: list[JournalEntry] = []
    discarded = 0
    for line in lines:
        if not line.strip():
            continue
        try:
            entries.append(JournalEntry.model_validate_json(line))
        except ValidationError:
            discarded += 1
    return entries, discarded


class IncidentJournal:
    def __init__(self, base_dir: str | Path | None = None):
        self._base = Path(base_dir or settings.monitor_clients_dir)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, tenant_id: str) -> asyncio.Lock:
        return self._locks.setdefault(tenant_id.casefold(), asyncio.Lock())

    def journal_path(self, tenant_id: str) -> Path:
        return self._base / tenant_id / JOURNAL_FILE

    # ── Reads ────────────────────────────────────────────────────────────────

    async def entries(self, tenant_id: str) -> list[JournalEntry]:
        async with self._lock(tenant_id):
            entries, _ = await asyncio.to_thread(self._load, tenant_id)
        return entries

    async def historical_downtime_minutes(
        self, tenant_id: str, service_name: str, time_from: int, time_till: int
    ) -> float:
        """Minutes of resolved downtime for a service overlapping ``[time_from, time_till]``.

        Each record only contributes the part that falls inside the window.
        """
        wanted = service_name.casefold()
        total = 0.0
        for entry in await self.entries(tenant_id):
            if entry.kind != "resolved" or entry.end is None:
                continue
            if entry.service.casefold() != wanted:
                continue
            if entry.end < time_from or entry.start > time_till:
                continue
            total += (min(entry.end, time_till) - max(entry.start, time_from)) / 60.0
        return total

    # ── Appends ──────────────────────────────────────────────────────────────

    async def record_opened(self, tenant_id: str, service_name: str, start: int) -> bool:
        """Log an incident opening unless the same service+start is already logged."""
        entry = JournalEntry(
            kind="opened", service=service_name, start=start, recorded_at=datetime.now(timezone.utc)
        )
        return await self._append(tenant_id, [entry]) == 1

    async def record_resolved(
        self, tenant_id: str, service_name: str, start: int, end: int, duration_seconds: int
    ) -> bool:
        """Log an incident resolution unless the same service+start is already logged as resolved."""
        entry = JournalEntry(
            kind="resolved",
            service=service_name,
            start=start,
            end=end,
            duration_seconds=duration_seconds,
            recorded_at=datetime.now(timezone.utc),
        )
        return await self._append(tenant_id, [entry]) == 1

    async def sync_incidents(self, tenant_id: str, service_name: str, incidents: list[Incident]) -> int:
        """Log every incident not yet in the journal. Returns the number of new lines."""
        now = datetime.now(timezone.utc)
        candidates = []
        for incident in incidents:
            start = int(incident.start_time.timestamp())
            if incident.is_active:
                candidates.append(JournalEntry(kind="opened", service=service_name, start=start, recorded_at=now))
            else:
                candidates.append(
                    JournalEntry(
                        kind="resolved",
                        service=service_name,
                        start=start,
                        end=int(incident.end_time.timestamp()),
                        duration_seconds=incident.duration_seconds,
                        recorded_at=now,
                    )
                )
        if not candidates:
            return 0
        return await self._append(tenant_id, candidates)

    async def _append(self, tenant_id: str, candidates: list[JournalEntry]) -> int:
        # Dedup check and write share one critical section.
        async with self._lock(tenant_id):
            entries, discarded = await asyncio.to_thread(self._load, tenant_id)
            seen = {e.key() for e in entries}
            new = []
            for candidate in candidates:
                if candidate.key() in seen:
                    continue
                seen.add(candidate.key())
                new.append(candidate)

            if not new and not discarded:
                return 0
            await asyncio.to_thread(self._rewrite, tenant_id, entries + new)

        for entry in new:
            logger.info("journal_incident_recorded", client_id=tenant_id, kind=entry.kind, service=entry.service)
        if discarded:
            logger.info("journal_legacy_lines_discarded", client_id=tenant_id, count=discarded)
        return len(new)

    # ── Pruning ──────────────────────────────────────────────────────────────

    async def prune_removed_services(self, tenant_id: str, current_services: set[str]) -> int:
        """Drop entries for services no longer configured (case-insensitive). Returns lines removed."""
        keep = {s.casefold() for s in current_services}
        return await self._prune(tenant_id, lambda e: e.service.casefold() in keep, "removed_services")

    async def prune_older_than(self, tenant_id: str, threshold: int) -> int:
        """Drop resolved entries that ended before ``threshold`` and opened entries that started before it."""

        def _recent(entry: JournalEntry) -> bool:
            if entry.kind == "resolved":
                return entry.end is not None and entry.end >= threshold
            return entry.start >= threshold

        return await self._prune(tenant_id, _recent, "retention")

    async def _prune(self, tenant_id: str, keep, reason: str) -> int:
        async with self._lock(tenant_id):
            if not self.journal_path(tenant_id).exists():
                return 0
            entries, discarded = await asyncio.to_thread(self._load, tenant_id)
            kept = [e for e in entries if keep(e)]
            removed = len(entries) - len(kept) + discarded
            if removed:
                await asyncio.to_thread(self._rewrite, tenant_id, kept)

        if removed:
            logger.info("journal_pruned", client_id=tenant_id, reason=reason, removed=removed)
        return removed

    # ── File I/O ─────────────────────────────────────────────────────────────

    def _load(self, tenant_id: str) -> tuple[list[JournalEntry], int]:
        path = self.journal_path(tenant_id)
        if not path.exists():
            return [], 0
        return _parse_lines(path.read_text(encoding="utf-8").splitlines())

    def _rewrite(self, tenant_id: str, entries: list[JournalEntry]) -> None:
        path = self.journal_path(tenant_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        lines = [json.dumps(e.model_dump(mode="json", exclude_none=True)) for e in entries]
        try:
            tmp_path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
