"""In-memory document store with Couchbase semantics.

Documents carry CAS values, replace is CAS-checked, insert enforces key
uniqueness and transactions are optimistic: reads record the CAS they saw,
writes are staged and the commit is rejected (and the attempt retried) when
any document read or inserted by the attempt changed underneath it. Every
operation yields to the event loop once, standing in for the storage
round-trip, so concurrent tasks interleave the way request handlers do.
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from copy import deepcopy
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from couchbase.exceptions import (
    CASMismatchException,
    DocumentExistsException,
    DocumentNotFoundException,
)

from .keyspace import OrderBy

R = TypeVar("R")

_Key = Tuple[str, str]


class TransactionConflict(RuntimeError):
    """Raised when a transaction keeps conflicting after all attempts."""


class _Missing:
    """Sorts before every stored value, like MISSING/NULL in N1QL."""

    def __lt__(self, other: Any) -> bool:
        return not isinstance(other, _Missing)

    def __gt__(self, other: Any) -> bool:
        return False

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, _Missing)


class InMemoryKeyspace:
    def __init__(self, store: "InMemoryStore", collection_name: str) -> None:
        self._store = store
        self.collection_name = collection_name

    def __str__(self) -> str:
        return f"memory.{self.collection_name}"

    @property
    def _docs(self) -> Dict[str, Tuple[dict, int]]:
        return self._store.collection(self.collection_name)

    async def get(self, key: str) -> Optional[Tuple[dict, int]]:
        await asyncio.sleep(0)
        entry = self._docs.get(key)
        if entry is None:
            return None
        return deepcopy(entry[0]), entry[1]

    async def insert(self, value: dict, key: Optional[str] = None, **kwargs) -> int:
        if key is None:
            key = str(uuid.uuid4())
        await asyncio.sleep(0)
        if key in self._docs:
            raise DocumentExistsException(message=f"document {key} exists")
        cas = self._store.next_cas()
        self._docs[key] = (deepcopy(value), cas)
        return cas

    async def replace(self, key: str, value: dict, cas: Optional[int] = None) -> int:
        await asyncio.sleep(0)
        entry = self._docs.get(key)
        if entry is None:
            raise DocumentNotFoundException(message=f"document {key} not found")
        if cas and entry[1] != cas:
            raise CASMismatchException(message=f"document {key} changed")
        new_cas = self._store.next_cas()
        self._docs[key] = (deepcopy(value), new_cas)
        return new_cas

    async def find(
        self,
        where: Dict[str, Any],
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Tuple[str, dict]]:
        await asyncio.sleep(0)
        rows = [
            (key, deepcopy(doc))
            for key, (doc, _cas) in self._docs.items()
            if all(doc.get(field) == value for field, value in where.items())
        ]
        # Stable sorts applied from the least significant key outward.
        for field, desc in reversed(list(order_by or [])):
            rows.sort(key=lambda row: _sort_value(row[1].get(field)), reverse=desc)
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return rows


def _sort_value(value: Any) -> Any:
    return _Missing() if value is None else value


class InMemoryTransaction:
    def __init__(self, store: "InMemoryStore") -> None:
        self._store = store
        self._observed: Dict[_Key, Optional[int]] = {}
        self._staged: Dict[_Key, dict] = {}

    async def get(self, keyspace: InMemoryKeyspace, key: str) -> Optional[dict]:
        ref = (keyspace.collection_name, key)
        if ref in self._staged:
            return deepcopy(self._staged[ref])
        await asyncio.sleep(0)
        entry = self._store.collection(keyspace.collection_name).get(key)
        self._observed[ref] = entry[1] if entry else None
        return deepcopy(entry[0]) if entry else None

    async def insert(self, keyspace: InMemoryKeyspace, key: str, value: dict) -> None:
        ref = (keyspace.collection_name, key)
        await asyncio.sleep(0)
        if ref in self._staged or key in self._store.collection(keyspace.collection_name):
            raise DocumentExistsException(message=f"document {key} exists")
        self._observed.setdefault(ref, None)
        self._staged[ref] = deepcopy(value)

    async def replace(self, keyspace: InMemoryKeyspace, key: str, value: dict) -> None:
        ref = (keyspace.collection_name, key)
        if ref not in self._observed:
            raise RuntimeError(f"Document {key} must be read in the transaction before replace")
        self._staged[ref] = deepcopy(value)

    def commit(self) -> bool:
        """Apply staged writes if nothing observed has changed since it was read.

        Runs without awaiting, so it is atomic with respect to other tasks.
        """
        for (collection, key), cas in self._observed.items():
            entry = self._store.collection(collection).get(key)
            current = entry[1] if entry else None
            if current != cas:
                return False
        for (collection, key), value in self._staged.items():
            self._store.collection(collection)[key] = (value, self._store.next_cas())
        return True


class InMemoryStore:
    """Process-local store used by tests and single-process development."""

    def __init__(self, max_attempts: int = 50) -> None:
        self._collections: Dict[str, Dict[str, Tuple[dict, int]]] = {}
        self._cas = itertools.count(1)
        self.max_attempts = max_attempts

    def collection(self, name: str) -> Dict[str, Tuple[dict, int]]:
        return self._collections.setdefault(name, {})

    def next_cas(self) -> int:
        return next(self._cas)

    def keyspace(self, collection_name: str) -> InMemoryKeyspace:
        return InMemoryKeyspace(self, collection_name)

    async def run_transaction(self, logic: Callable[[InMemoryTransaction], Awaitable[R]]) -> R:
        backoff_ms = 1
        for _ in range(self.max_attempts):
            txn = InMemoryTransaction(self)
            result = await logic(txn)
            if txn.commit():
                return result
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms = min(backoff_ms * 2, 20)
        raise TransactionConflict(f"transaction did not commit after {self.max_attempts} attempts")

    async def check_connection(self) -> None:
        return None
