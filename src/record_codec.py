"""
Record codec: maps a search history entry onto two independent envelopes.

The query text and the JSON results payload are encrypted separately, each
with its own salt, key and IV, so damage to one stored field never prevents
the other from being decrypted on its own.

Key derivation is CPU-bound (PBKDF2, 100k iterations per field). All work
that touches it is pushed to an executor so the event loop stays free.
"""

import asyncio
import json
from concurrent.futures import Executor
from dataclasses import dataclass
from functools import partial
from typing import Any, List, Optional

from src.crypto_engine import encrypt_text, decrypt_text
from src.envelope import CHECK_PAYLOAD
from src.exceptions import FormatError, ValidationError

SCHEMA_VERSION = 1
LEGACY_WRAPPER_KEYS = frozenset({"results", "searchResponse"})


def _is_legacy_wrapper(item) -> bool:
    """[{results, searchResponse}] as written before the schemaVersion tag."""
    return (
        isinstance(item, dict)
        and "results" in item
        and set(item) <= LEGACY_WRAPPER_KEYS
    )


@dataclass
class HistoryPayload:
    """
    Versioned plaintext layout of the encrypted results field.

    Serialized as {"schemaVersion": 1, "results": [...], "searchResponse": ...}.
    Readers ignore keys they do not know, so fields can be added without
    breaking older clients.
    """
    results: List[Any]
    search_response: Any = None
    schema_version: int = SCHEMA_VERSION

    def to_json(self) -> str:
        return json.dumps(
            {
                "schemaVersion": self.schema_version,
                "results": self.results,
                "searchResponse": self.search_response,
            },
            separators=(",", ":"),
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, text: str) -> "HistoryPayload":
        """
        Parse the decrypted results field.

        Accepts the current tagged layout and two legacy layouts:
            [{"results": [...], "searchResponse": ...}]   (wrapped)
            [...]                                          (bare results list)
        """
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            raise FormatError(CHECK_PAYLOAD, f"Results payload is not valid JSON: {e}") from e
        except RecursionError as e:
            raise FormatError(CHECK_PAYLOAD, "Results payload is nested too deeply") from e

        if isinstance(data, dict):
            return cls._from_mapping(data)

        if isinstance(data, list):
            if len(data) == 1 and _is_legacy_wrapper(data[0]):
                return cls._from_mapping(data[0], default_version=0)
            return cls(results=data, search_response=None, schema_version=0)

        raise FormatError(
            CHECK_PAYLOAD,
            f"Unsupported results payload type: {type(data).__name__}"
        )

    @classmethod
    def _from_mapping(cls, data: dict, default_version: int = 0) -> "HistoryPayload":
        version = data.get("schemaVersion", default_version)
        if not isinstance(version, int):
            raise FormatError(CHECK_PAYLOAD, "schemaVersion must be an integer")

        results = data.get("results")
        if results is None:
            results = []
        if not isinstance(results, list):
            raise FormatError(CHECK_PAYLOAD, "Payload 'results' must be a list")

        return cls(
            results=results,
            search_response=data.get("searchResponse"),
            schema_version=version,
        )


@dataclass(frozen=True)
class EncryptedFields:
    encrypted_query: str
    encrypted_results: str


@dataclass
class DecryptedRecord:
    query: str
    payload: HistoryPayload


async def _run(executor: Optional[Executor], func, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, partial(func, *args))


async def encrypt_record(
        query: str,
        results: List[Any],
        identifier: str,
        search_response: Any = None,
        executor: Optional[Executor] = None
) -> EncryptedFields:
    """
    Encrypt a query and its results into two independent envelopes.

    Raises:
        ValidationError: empty query/identifier, results not a list, or the
            results are not JSON-serializable
    """
    if not query or not isinstance(query, str):
        raise ValidationError("Query must be a non-empty string")
    if not isinstance(results, list):
        raise ValidationError("Results must be a list")
    if not identifier or not isinstance(identifier, str):
        raise ValidationError("Identifier must be a non-empty string")

    payload = HistoryPayload(results=results, search_response=search_response)
    try:
        payload_json = payload.to_json()
    except (TypeError, ValueError, RecursionError) as e:
        raise ValidationError(f"Results are not JSON-serializable: {e}") from e

    # Two unrelated derivations: each field gets its own salt, key and IV
    encrypted_query, encrypted_results = await asyncio.gather(
        _run(executor, encrypt_text, query, identifier),
        _run(executor, encrypt_text, payload_json, identifier),
    )
    return EncryptedFields(encrypted_query, encrypted_results)


async def decrypt_field(
        envelope: str,
        identifier: str,
        executor: Optional[Executor] = None
) -> str:
    """Decrypt a single envelope without touching the record's other field."""
    return await _run(executor, decrypt_text, envelope, identifier)


async def decrypt_record(
        encrypted_query: str,
        encrypted_results: str,
        identifier: str,
        executor: Optional[Executor] = None
) -> DecryptedRecord:
    """
    Reverse encrypt_record().

    Raises:
        FormatError: an envelope or the results payload is malformed
        DecryptionError: wrong identifier or tampered ciphertext
    """
    # Wait for both fields so no executor work outlives the caller's slot
    query, results_json = await asyncio.gather(
        decrypt_field(encrypted_query, identifier, executor),
        decrypt_field(encrypted_results, identifier, executor),
        return_exceptions=True,
    )
    for outcome in (query, results_json):
        if isinstance(outcome, BaseException):
            raise outcome
    return DecryptedRecord(query=query, payload=HistoryPayload.from_json(results_json))
