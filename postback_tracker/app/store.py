from __future__ import annotations

import logging
from threading import RLock
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError

from postback_tracker.app.models import AttributionRecord
from postback_tracker.app.persistence import PersistenceError

if TYPE_CHECKING:
    from postback_tracker.app.persistence import JsonFilePersistence

logger = logging.getLogger("postback_tracker.store")


class AttributionStore:
    """Subject id -> attribution record, guarded by one lock.

    Every mutation rewrites the whole snapshot while the lock is held, so
    concurrent puts for different subjects can never lose each other's writes.
    """

    def __init__(
        self,
        persistence: Optional["JsonFilePersistence"] = None,
        *,
        max_entries: int = 10000,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._lock = RLock()
        self.persistence = persistence
        self.max_entries = max_entries
        self._records: dict[str, AttributionRecord] = {}

    def load(self) -> int:
        if not self.persistence:
            return 0
        try:
            snapshot = self.persistence.load_snapshot()
        except PersistenceError as exc:
            logger.error("attribution_load_failed error=%s; starting empty", exc)
            snapshot = None
        with self._lock:
            self._records = self._hydrate_from_snapshot(snapshot or {})
            evicted = self._evict_overflow()
            if evicted:
                self._persist_state()
            logger.info("attribution_loaded mappings=%s", len(self._records))
            return len(self._records)

    def lookup(self, subject_id: str) -> Optional[AttributionRecord]:
        with self._lock:
            return self._records.get(str(subject_id))

    def put(self, subject_id: str, record: AttributionRecord) -> list[str]:
        key = str(subject_id)
        if record.subject_id != key:
            record = record.model_copy(update={"subject_id": key})
        with self._lock:
            self._records[key] = record
            evicted = self._evict_overflow()
            self._persist_state()
            return evicted

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def records(self) -> list[AttributionRecord]:
        with self._lock:
            values = list(self._records.values())
        return sorted(values, key=lambda record: record.created_at, reverse=True)

    def flush(self) -> None:
        with self._lock:
            self._persist_state()

    def _evict_overflow(self) -> list[str]:
        evicted: list[str] = []
        while len(self._records) > self.max_entries:
            oldest = min(self._records.values(), key=lambda record: record.created_at)
            del self._records[oldest.subject_id]
            evicted.append(oldest.subject_id)
            logger.info(
                "attribution_evicted subject_id=%s created_at=%s max_entries=%s",
                oldest.subject_id,
                oldest.created_at.isoformat(),
                self.max_entries,
            )
        return evicted

    def _persist_state(self) -> None:
        if not self.persistence:
            return
        try:
            self.persistence.save_snapshot(self._snapshot_data())
        except PersistenceError as exc:
            logger.error("attribution_save_failed mappings=%s error=%s", len(self._records), exc)

    def _snapshot_data(self) -> dict:
        return {key: record.storage_value() for key, record in self._records.items()}

    @staticmethod
    def _hydrate_from_snapshot(snapshot: dict) -> dict[str, AttributionRecord]:
        records: dict[str, AttributionRecord] = {}
        for key, value in snapshot.items():
            if not isinstance(value, dict):
                logger.warning("attribution_entry_skipped subject_id=%s reason=not_an_object", key)
                continue
            try:
                records[str(key)] = AttributionRecord.model_validate({**value, "subjectId": str(key)})
            except ValidationError as exc:
                logger.warning(
                    "attribution_entry_skipped subject_id=%s reason=%s",
                    key,
                    exc.errors()[0]["msg"] if exc.errors() else "invalid",
                )
        return records


def read_records(persistence: "JsonFilePersistence") -> list[AttributionRecord]:
    """Read a snapshot without evicting or saving; raises PersistenceError."""
    snapshot = persistence.load_snapshot() or {}
    records = AttributionStore._hydrate_from_snapshot(snapshot)
    return sorted(records.values(), key=lambda record: record.created_at, reverse=True)
