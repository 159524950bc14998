from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from leadsync.models.schemas import RecordBase

logger = logging.getLogger("leadsync.replica")

Listener = Callable[["ReplicaStore"], None]


class ReplicaStore:
    """
    Client-held copy of one table, keyed by id, newest `created_at` first.

    Views register listeners and re-derive their projections from `list()`
    whenever the replica changes. A write that does not change what the
    replica holds (same version replayed, stale version) notifies no one.
    """

    def __init__(self, table: str, *, single: bool = False):
        self.table = table
        self.single = single
        self.version = 0
        self._records: Dict[str, RecordBase] = {}
        self._listeners: List[Listener] = []

    # ---------------- listeners ----------------
    def add_listener(self, fn: Listener) -> Callable[[], None]:
        self._listeners.append(fn)

        def _remove() -> None:
            if fn in self._listeners:
                self._listeners.remove(fn)

        return _remove

    def _changed(self) -> None:
        self.version += 1
        for fn in list(self._listeners):
            try:
                fn(self)
            except Exception:
                logger.exception("replica: listener failed table=%s", self.table)

    # ---------------- mutations ----------------
    def upsert(self, record: RecordBase) -> bool:
        """Returns True if the replica changed."""
        current = self._records.get(record.id)
        if current is not None:
            if current == record:
                return False
            held = getattr(current, "updated_at", None)
            incoming = getattr(record, "updated_at", None)
            if held and incoming and incoming < held:
                logger.debug("replica: stale version ignored table=%s id=%s", self.table, record.id)
                return False
        if self.single and record.id not in self._records:
            self._records.clear()
        self._records[record.id] = record
        self._changed()
        return True

    def remove(self, record_id: str) -> bool:
        if self._records.pop(record_id, None) is None:
            return False
        self._changed()
        return True

    def replace_all(self, records: Iterable[RecordBase]) -> None:
        """Full reload: the replica becomes exactly `records`."""
        fresh: Dict[str, RecordBase] = {}
        for rec in records:
            fresh[rec.id] = rec
        if self.single and len(fresh) > 1:
            newest = max(fresh.values(), key=lambda r: r.created_at)
            fresh = {newest.id: newest}
        self._records = fresh
        self._changed()

    def clear(self) -> None:
        if self._records:
            self._records.clear()
            self._changed()

    # ---------------- reads ----------------
    def get(self, record_id: str) -> Optional[RecordBase]:
        return self._records.get(record_id)

    def first(self) -> Optional[RecordBase]:
        items = self.list()
        return items[0] if items else None

    def list(self) -> List[RecordBase]:
        return sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)
