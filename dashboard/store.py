"""
goal: local analysis history. an append-only list of AnalysisRecords kept in one JSON file, newest first.
every write replaces the whole file through a temp file + os.replace under a lock, so concurrent requests
never interleave partial writes and an abandoned analysis never leaves half a record behind.
reads go back to the file each time, so edits from another process show up without a restart.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from dashboard.records import THREAT_RANK, AnalysisRecord

logger = logging.getLogger("threatlens.store")

SORT_KEYS = ("timestamp", "filename", "confidence", "threat_level")


def _parse_ts(ts: str) -> datetime | None:
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class AnalysisStore:
    def __init__(self, path: str | os.PathLike[str], max_records: int = 1000) -> None:
        self.path = Path(path)  # JSON file holding the list of records
        self.max_records = max(1, int(max_records))  # oldest entries beyond this are dropped
        self._lock = threading.Lock()  # serializes read-modify-write cycles

    # raw file access

    def _read_rows(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                content = f.read().strip()
            if not content:  # empty file means empty history
                return []
            data = json.loads(content)
        except (OSError, ValueError) as e:
            logger.warning("history file %s unreadable, treating as empty: %s", self.path, e)
            return []
        if not isinstance(data, list):
            logger.warning("history file %s is not a JSON list, treating as empty", self.path)
            return []
        return [row for row in data if isinstance(row, dict)]

    def _write_rows(self, rows: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2, ensure_ascii=False)
        os.replace(tmp, self.path)  # the commit point, readers see old or new, never half

    @staticmethod
    def _to_records(rows: list[dict[str, Any]]) -> list[AnalysisRecord]:
        out: list[AnalysisRecord] = []
        for row in rows:
            try:
                out.append(AnalysisRecord.from_dict(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("skipping malformed history row %r: %s", row.get("id"), e)
        return out

    # public API

    def append(self, record: AnalysisRecord) -> None:
        with self._lock:
            rows = self._read_rows()
            rows.insert(0, record.to_dict())  # newest first
            del rows[self.max_records :]
            self._write_rows(rows)
        logger.info("stored analysis %s (%s)", record.id, record.filename)

    def list_all(self) -> list[AnalysisRecord]:
        with self._lock:
            rows = self._read_rows()
        return self._to_records(rows)

    def get_by_id(self, record_id: str) -> AnalysisRecord | None:
        with self._lock:
            rows = self._read_rows()
        found = self._to_records([row for row in rows if row.get("id") == record_id])
        return found[0] if found else None

    def delete_by_id(self, record_id: str) -> bool:
        """Remove a record. Unknown ids are a no-op and leave the file untouched."""
        with self._lock:
            rows = self._read_rows()
            kept = [row for row in rows if row.get("id") != record_id]
            if len(kept) == len(rows):
                return False
            self._write_rows(kept)
        logger.info("deleted analysis %s", record_id)
        return True

    def clear(self) -> int:
        with self._lock:
            n = len(self._read_rows())
            self._write_rows([])
        logger.info("cleared %d analyses", n)
        return n

    def statistics(self, now: datetime | None = None) -> dict[str, Any]:
        return compute_statistics(self.list_all(), now)


def query(
    records: list[AnalysisRecord],
    q: str = "",
    threat: str = "",
    sort: str = "timestamp",
    order: str = "desc",
) -> list[AnalysisRecord]:
    """Filter by filename/id substring and threat level, then sort."""
    needle = (q or "").strip().lower()
    threat = (threat or "").strip().lower()
    out = [
        r
        for r in records
        if (not needle or needle in r.filename.lower() or needle in r.id.lower())
        and (not threat or threat == "all" or r.threat_level == threat)
    ]
    if sort not in SORT_KEYS:
        sort = "timestamp"

    def key(r: AnalysisRecord) -> Any:
        if sort == "filename":
            return r.filename.lower()
        if sort == "confidence":
            return r.confidence
        if sort == "threat_level":
            return THREAT_RANK.get(r.threat_level, 0)
        dt = _parse_ts(r.timestamp)
        return dt.timestamp() if dt else 0.0

    return sorted(out, key=key, reverse=(order or "desc").lower() != "asc")


def compute_statistics(records: list[AnalysisRecord], now: datetime | None = None) -> dict[str, Any]:
    """Dashboard counters plus seven 4-hour activity windows covering the last 28 hours."""
    now = now or datetime.now(timezone.utc)
    day_ago = now - timedelta(hours=24)
    stamped = [(r, _parse_ts(r.timestamp)) for r in records]

    total = len(records)
    threats = sum(1 for r in records if r.threat_level in ("high", "critical"))
    avg_conf = round(sum(r.confidence for r in records) / total) if total else 0
    recent = sum(1 for _, dt in stamped if dt and dt > day_ago)
    distribution: dict[str, int] = {}
    for r in records:
        distribution[r.threat_level] = distribution.get(r.threat_level, 0) + 1

    activity = []
    for i in range(6, -1, -1):
        start = now - timedelta(hours=4 * (i + 1))
        end = start + timedelta(hours=4)
        window = [r for r, dt in stamped if dt and start <= dt < end]
        value = 0
        level = "low"
        if window:
            # critical=4, high=3, medium=2, low=1
            avg_score = sum(THREAT_RANK.get(r.threat_level, 0) + 1 for r in window) / len(window)
            value = round(min(100, 20 + avg_score * 20 + len(window) * 5))
            if avg_score >= 3:
                level = "high"
            elif avg_score >= 2:
                level = "medium"
        activity.append({"time": end.strftime("%H:00"), "value": value, "count": len(window), "threat_level": level})

    return {
        "total": total,
        "threats": threats,
        "avg_confidence": avg_conf,
        "recent_scans": recent,
        "threat_distribution": distribution,
        "recent_activity": activity,
    }
