"""Query history storage, export, and timing helpers."""

from __future__ import annotations

import csv
import io
import json
import logging
import threading
import time
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from rag_engine.errors import ExportFormatError
from rag_engine.types import QueryRecord

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv")


class QueryHistory:
    """Append-only store of answered queries, optionally mirrored to a JSON file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._records: dict[str, QueryRecord] = {}
        self._lock = threading.Lock()
        self._path = Path(path) if path else None

    def add(self, record: QueryRecord) -> None:
        with self._lock:
            self._records[record.query_id] = record
        self.save()

    def get(self, query_id: str) -> QueryRecord:
        with self._lock:
            record = self._records.get(query_id)
        if record is None:
            raise KeyError(f"Query not found: {query_id}")
        return record

    def list_recent(self, limit: int = 50, offset: int = 0) -> tuple[list[QueryRecord], int]:
        """Newest first; returns the requested page and the total count."""
        with self._lock:
            records = sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
        return records[offset : offset + limit], len(records)

    def delete(self, query_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(query_id, None) is not None
        if removed:
            self.save()
        return removed

    def clear(self, cutoff: datetime | None = None) -> int:
        """Delete records older than `cutoff`, or everything when omitted.

        A naive `cutoff` is taken to be UTC.
        """

        if cutoff is not None and cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        with self._lock:
            if cutoff is None:
                deleted = len(self._records)
                self._records.clear()
            else:
                stale = [qid for qid, rec in self._records.items() if rec.created_at < cutoff]
                for qid in stale:
                    del self._records[qid]
                deleted = len(stale)
        self.save()
        return deleted

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def export(self, query_ids: Sequence[str], fmt: str = "json") -> bytes:
        """Serialize the selected records; unknown ids are skipped."""

        if fmt not in EXPORT_FORMATS:
            raise ExportFormatError(f"Unsupported export format: {fmt}")
        with self._lock:
            records = [self._records[qid] for qid in query_ids if qid in self._records]

        if fmt == "json":
            return json.dumps(
                [record.to_dict() for record in records], ensure_ascii=False, indent=2
            ).encode("utf-8")

        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(["query", "answer", "timestamp", "confidence"])
        for record in records:
            writer.writerow(
                [record.query, record.answer, record.created_at.isoformat(), record.confidence]
            )
        return buffer.getvalue().encode("utf-8")

    def summary(self) -> dict[str, float | int]:
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {"total_queries": 0, "avg_confidence": 0.0, "avg_latency_ms": 0.0, "extractive_answers": 0}
        return {
            "total_queries": total,
            "avg_confidence": sum(r.confidence for r in records) / total,
            "avg_latency_ms": sum(r.latency_ms for r in records) / total,
            "extractive_answers": sum(1 for r in records if r.answer_mode == "extractive"),
        }

    def load(self) -> int:
        """Load records from the configured file; a missing file starts fresh."""

        if self._path is None or not self._path.exists():
            logger.info("No existing query history found, starting fresh")
            return 0
        payload = json.loads(self._path.read_text(encoding="utf-8"))
        loaded = [QueryRecord.from_dict(item) for item in payload]
        with self._lock:
            for record in loaded:
                self._records[record.query_id] = record
        logger.info("Loaded %d queries from history", len(loaded))
        return len(loaded)

    def save(self) -> None:
        if self._path is None:
            return
        with self._lock:
            payload = [record.to_dict() for record in self._records.values()]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("Error saving query history: %s", exc)


class Timer:
    """Simple context timer used by the query engine."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
