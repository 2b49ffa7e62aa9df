"""Copy-on-write record store with compare-and-set state transitions.

Every record held here is a frozen snapshot. Readers get whatever snapshot is
current without taking the lock; writers swap in a new snapshot under the
lock only when the record is still in the expected prior state. A completion
report racing a deletion therefore applies to at most one of them.
"""

import json
import logging
import os
import threading
from enum import Enum
from typing import Dict, Generic, Iterable, List, Mapping, Optional, Set, Type, TypeVar, Union

from simhub.core.errors import NotFoundError
from simhub.core.wire import RecordModel

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=RecordModel)


class IllegalTransition(RuntimeError):
    """Raised when code asks for a transition the state machine does not have."""


class RecordStore(Generic[R]):
    record_cls: Type[R]
    kind: str = "record"
    transitions: Mapping[Enum, Set[Enum]] = {}

    def __init__(self, persist_path: Optional[str] = None):
        self._records: Dict[str, R] = {}
        self._lock = threading.Lock()
        self._persist_path = persist_path

    # ------------------------------------------------------------------
    # Reads (lock-free point-in-time snapshots)
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> Optional[R]:
        return self._records.get(record_id)

    def require(self, record_id: str) -> R:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"{self.kind} '{record_id}' not found")
        return record

    def list(self) -> List[R]:
        """All records, most recently created first."""
        return sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, record: R) -> R:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"{self.kind} '{record.id}' already exists")
            self._records[record.id] = record
            self._persist()
        logger.info("%s %s created (%s)", self.kind, record.id, record.status.value)
        return record

    def transition(
        self,
        record_id: str,
        expected: Union[Enum, Iterable[Enum]],
        new_status: Enum,
        **updates,
    ) -> Optional[R]:
        """Move a record to ``new_status`` if it is currently in ``expected``.

        Returns the new snapshot, or None when the record is gone or has
        already moved on.
        """
        allowed = {expected} if isinstance(expected, Enum) else set(expected)
        with self._lock:
            current = self._records.get(record_id)
            if current is None or current.status not in allowed:
                return None
            if new_status not in self.transitions.get(current.status, set()):
                raise IllegalTransition(
                    f"{self.kind} {record_id}: {current.status.value} -> {new_status.value}"
                )
            updated = current.model_copy(update={"status": new_status, **updates})
            self._records[record_id] = updated
            self._persist()
        logger.info(
            "%s %s: %s -> %s", self.kind, record_id, current.status.value, new_status.value
        )
        return updated

    def delete(self, record_id: str) -> Optional[R]:
        with self._lock:
            removed = self._records.pop(record_id, None)
            if removed is not None:
                self._persist()
        if removed is not None:
            logger.info("%s %s deleted", self.kind, record_id)
        return removed

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if not self._persist_path:
            return
        payload = [r.model_dump(mode="json", by_alias=True) for r in self._records.values()]
        tmp_path = f"{self._persist_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh)
        os.replace(tmp_path, self._persist_path)

    def load(self) -> List[R]:
        """Reload the snapshot written by a previous process. Returns the records."""
        if not self._persist_path or not os.path.exists(self._persist_path):
            return []
        with open(self._persist_path, encoding="utf-8") as fh:
            payload = json.load(fh)
        records = [self.record_cls.model_validate(item) for item in payload]
        with self._lock:
            for record in records:
                self._records[record.id] = record
        logger.info("Restored %d %s record(s) from %s", len(records), self.kind, self._persist_path)
        return records
