"""
Search History Store
Orchestrates save/load/delete/clear/count of client-side encrypted search history
"""

import asyncio
import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.config import MAX_CONCURRENCY
from src.crypto_engine import normalize_identifier
from src.datastore import EncryptedRecord, HistoryDatastore
from src.diagnostics import diagnose, log_envelope_diagnostics
from src.exceptions import DatastoreError, DecryptionError, FormatError, ValidationError
from src.record_codec import decrypt_record, encrypt_record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """
    Authenticated user as supplied by the hosting application.

    owner_id scopes rows in the datastore; the normalized email is the key
    derivation identifier and never leaves the client.
    """
    owner_id: str
    email: str

    @property
    def identifier(self) -> str:
        return normalize_identifier(self.email)


@dataclass
class HistoryItem:
    """Decrypted history entry. Exists only in memory."""
    id: str
    query: str
    timestamp: datetime
    results: List[Any] = field(default_factory=list)
    search_response: Any = None

    def as_dict(self) -> Dict[str, Any]:
        item = {
            "id": self.id,
            "query": self.query,
            "timestamp": self.timestamp.isoformat(),
            "results": self.results,
        }
        if self.search_response is not None:
            item["searchResponse"] = self.search_response
        return item


def parse_timestamp(value) -> datetime:
    """Parse a stored created_at value into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
        except (TypeError, ValueError):
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class HistoryStore:
    """
    Encrypted search history for one authenticated user.

    Row lifecycle:
        - created: first save() of a search_id
        - overwritten: repeat save() of the same search_id (last write wins)
        - deleted: delete_one() / clear_all()
        - purged: diagnostics or decryption failed during load_all()

    Failure policy:
        - save/delete_one/clear_all: every error reaches the caller
        - load_all: a bad row is logged, skipped and queued for purge;
          only a failed initial fetch raises

    No state is shared between calls; the datastore handle and identity are
    injected, and each load_all() builds its own concurrency limiter.
    """

    def __init__(
            self,
            datastore: HistoryDatastore,
            identity: Identity,
            executor: Optional[Executor] = None,
            max_concurrency: Optional[int] = None,
            purge_corrupted: bool = True
    ):
        """
        Args:
            datastore: table of encrypted rows
            identity: owner id + email of the signed-in user
            executor: where key derivation runs (default: loop's thread pool)
            max_concurrency: rows decrypted in parallel during load_all()
            purge_corrupted: delete rows that fail diagnostics or decryption
        """
        if datastore is None:
            raise ValidationError("A datastore handle is required")
        if not isinstance(identity, Identity):
            raise ValidationError("identity must be an Identity")
        if not identity.owner_id or not isinstance(identity.owner_id, str):
            raise ValidationError("owner_id must be a non-empty string")

        if max_concurrency is None:
            max_concurrency = MAX_CONCURRENCY
        if not isinstance(max_concurrency, int) or isinstance(max_concurrency, bool) or max_concurrency < 1:
            raise ValidationError("max_concurrency must be a positive integer")

        self.datastore = datastore
        self.owner_id = identity.owner_id
        self.identifier = identity.identifier
        self.executor = executor
        self.max_concurrency = max_concurrency
        self.purge_corrupted = purge_corrupted

    @staticmethod
    def _check_search_id(search_id: str) -> None:
        if not search_id or not isinstance(search_id, str):
            raise ValidationError("search_id must be a non-empty string")

    async def save(
            self,
            search_id: str,
            query: str,
            results: List[Any],
            search_response: Any = None
    ) -> None:
        """
        Encrypt and upsert one search. A repeat save of the same search_id
        replaces the stored content entirely.
        """
        self._check_search_id(search_id)
        fields = await encrypt_record(
            query, results, self.identifier,
            search_response=search_response,
            executor=self.executor
        )
        await self.datastore.upsert(
            self.owner_id, search_id,
            fields.encrypted_query, fields.encrypted_results
        )
        logger.debug("Saved history entry %s", search_id)

    async def load_all(self) -> List[HistoryItem]:
        """
        Fetch and decrypt every row of the current user, newest first.

        Rows failing diagnostics are never decrypted. Rows failing
        diagnostics or decryption are dropped from the result and purged
        in one best-effort batch delete.
        """
        try:
            rows = await self.datastore.select_by_owner(self.owner_id)
        except DatastoreError:
            logger.error("Failed to fetch search history", exc_info=True)
            raise

        if not rows:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._load_row(row, semaphore) for row in rows)
        )

        items: List[HistoryItem] = []
        corrupted: List[str] = []
        for row, item in zip(rows, outcomes):
            if item is None:
                corrupted.append(row.id)
            else:
                items.append(item)

        if corrupted:
            await self._purge(corrupted)
        return items

    async def _load_row(self, row: EncryptedRecord, semaphore: asyncio.Semaphore) -> Optional[HistoryItem]:
        if not (diagnose(row.encrypted_query).is_valid and diagnose(row.encrypted_results).is_valid):
            log_envelope_diagnostics(row.id, row.encrypted_query, row.encrypted_results)
            return None

        async with semaphore:
            try:
                record = await decrypt_record(
                    row.encrypted_query, row.encrypted_results,
                    self.identifier, executor=self.executor
                )
                timestamp = parse_timestamp(row.created_at)
            except (FormatError, DecryptionError, ValueError) as e:
                logger.warning("Failed to decrypt history item %s: %s", row.id, e)
                return None

        return HistoryItem(
            id=row.search_id,
            query=record.query,
            timestamp=timestamp,
            results=record.payload.results,
            search_response=record.payload.search_response,
        )

    async def _purge(self, ids: List[str]) -> int:
        if not self.purge_corrupted:
            logger.warning("Skipping %d corrupted history rows (purge disabled)", len(ids))
            return 0
        try:
            deleted = await self.datastore.delete_by_ids(self.owner_id, ids)
        except DatastoreError as e:
            logger.warning("Cleanup of %d corrupted history rows failed: %s", len(ids), e)
            return 0
        logger.info("Purged %d corrupted history rows", deleted)
        return deleted

    async def delete_one(self, search_id: str) -> int:
        self._check_search_id(search_id)
        return await self.datastore.delete_by_search_id(self.owner_id, search_id)

    async def clear_all(self) -> int:
        return await self.datastore.delete_all(self.owner_id)

    async def count(self) -> int:
        return await self.datastore.count(self.owner_id)
