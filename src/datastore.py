"""
Datastore port for encrypted search history rows.

The store only ever sees opaque envelope strings. Implementations must
provide per-row atomic upsert (unique on owner_id + search_id) and delete;
no other transactional guarantees are relied on.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

from src.exceptions import DatastoreError

__all__ = [
    "DatastoreError",
    "EncryptedRecord",
    "HistoryDatastore",
    "InMemoryDatastore",
    "utc_now",
]


def utc_now() -> str:
    """ISO-8601 UTC timestamp with microseconds, sortable as text."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class EncryptedRecord:
    """One stored history row. Both payload fields are envelope strings."""
    id: str
    owner_id: str
    search_id: str
    encrypted_query: str
    encrypted_results: str
    created_at: str
    updated_at: str


class HistoryDatastore(ABC):
    """
    Async access to the encrypted_search_history table.

    Every operation is scoped to a single owner.
    """

    @abstractmethod
    async def upsert(
            self,
            owner_id: str,
            search_id: str,
            encrypted_query: str,
            encrypted_results: str
    ) -> EncryptedRecord:
        """Insert a row, or overwrite the payload of the row with the same (owner_id, search_id)."""

    @abstractmethod
    async def select_by_owner(self, owner_id: str) -> List[EncryptedRecord]:
        """All rows for owner_id, newest created_at first."""

    @abstractmethod
    async def delete_by_ids(self, owner_id: str, ids: Iterable[str]) -> int:
        """Delete rows by primary key; ids belonging to other owners are ignored."""

    @abstractmethod
    async def delete_by_search_id(self, owner_id: str, search_id: str) -> int:
        pass

    @abstractmethod
    async def delete_all(self, owner_id: str) -> int:
        pass

    @abstractmethod
    async def count(self, owner_id: str) -> int:
        pass

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class InMemoryDatastore(HistoryDatastore):
    """
    Dict-backed datastore for tests and throwaway sessions.

    Rows are keyed by (owner_id, search_id). An insertion counter breaks
    ties between rows created within the same microsecond.
    """

    def __init__(self):
        self._rows: Dict[Tuple[str, str], EncryptedRecord] = {}
        self._sequence: Dict[str, int] = {}
        self._next_sequence = 0

    async def upsert(self, owner_id, search_id, encrypted_query, encrypted_results):
        if not owner_id or not search_id:
            raise DatastoreError("owner_id and search_id are required")

        now = utc_now()
        key = (owner_id, search_id)
        existing = self._rows.get(key)
        if existing is None:
            record = EncryptedRecord(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                search_id=search_id,
                encrypted_query=encrypted_query,
                encrypted_results=encrypted_results,
                created_at=now,
                updated_at=now,
            )
            self._sequence[record.id] = self._next_sequence
            self._next_sequence += 1
        else:
            record = replace(
                existing,
                encrypted_query=encrypted_query,
                encrypted_results=encrypted_results,
                updated_at=now,
            )
        self._rows[key] = record
        return record

    async def select_by_owner(self, owner_id):
        rows = [r for r in self._rows.values() if r.owner_id == owner_id]
        rows.sort(key=lambda r: (r.created_at, self._sequence[r.id]), reverse=True)
        return rows

    async def delete_by_ids(self, owner_id, ids):
        wanted = set(ids)
        doomed = [
            key for key, r in self._rows.items()
            if r.owner_id == owner_id and r.id in wanted
        ]
        for key in doomed:
            self._sequence.pop(self._rows.pop(key).id, None)
        return len(doomed)

    async def delete_by_search_id(self, owner_id, search_id):
        record = self._rows.pop((owner_id, search_id), None)
        if record is None:
            return 0
        self._sequence.pop(record.id, None)
        return 1

    async def delete_all(self, owner_id):
        doomed = [key for key, r in self._rows.items() if r.owner_id == owner_id]
        for key in doomed:
            self._sequence.pop(self._rows.pop(key).id, None)
        return len(doomed)

    async def count(self, owner_id):
        return sum(1 for r in self._rows.values() if r.owner_id == owner_id)

