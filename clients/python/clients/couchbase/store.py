"""Storage backend selection.

Entity models resolve their keyspace through the active store so the same
operations run against a Couchbase cluster in deployment and against the
in-memory store in tests.
"""

from typing import Awaitable, Callable, Optional, TypeVar

from .config import check_connection
from .in_memory import InMemoryStore
from .keyspace import Keyspace, get_keyspace
from .transactions import Transaction, run_couchbase_transaction

R = TypeVar("R")


class CouchbaseStore:
    def keyspace(self, collection_name: str) -> Keyspace:
        return get_keyspace(collection_name)

    async def run_transaction(self, logic: Callable[[Transaction], Awaitable[R]]) -> R:
        return await run_couchbase_transaction(logic)

    async def check_connection(self) -> None:
        await check_connection()


_store = None


def build_store(backend: str):
    if backend == "couchbase":
        return CouchbaseStore()
    if backend == "in_memory":
        return InMemoryStore()
    raise ValueError(f"unknown storage backend {backend}")


def set_store(store) -> None:
    global _store
    _store = store


def get_store():
    """Return the active store, defaulting to Couchbase."""
    global _store
    if _store is None:
        _store = CouchbaseStore()
    return _store


async def run_transaction(logic: Callable[[Transaction], Awaitable[R]]) -> R:
    return await get_store().run_transaction(logic)
