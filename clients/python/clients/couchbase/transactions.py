"""
Multi-document ACID units on top of Couchbase distributed transactions.

Operations that must write more than one document atomically (a bid plus
the auction's price, a sale record plus the auction's settlement) run their
logic through ``run_transaction``. The logic receives a ``Transaction`` and
may be re-invoked by the SDK when an attempt conflicts with another writer,
so it must not have side effects outside the transaction context.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, TypeVar

from couchbase.exceptions import DocumentNotFoundException

from .config import get_cluster
from .keyspace import Keyspace

logger = logging.getLogger(__name__)

R = TypeVar("R")


class Transaction(Protocol):
    async def get(self, keyspace: Any, key: str) -> Optional[dict]: ...

    async def insert(self, keyspace: Any, key: str, value: dict) -> None: ...

    async def replace(self, keyspace: Any, key: str, value: dict) -> None: ...


class CouchbaseTransaction:
    """Adapter exposing an acouchbase AttemptContext through ``Transaction``."""

    def __init__(self, ctx):
        self._ctx = ctx
        # Documents read in this attempt, needed to stage a replace.
        self._read: Dict[Tuple[str, str], Any] = {}

    async def get(self, keyspace: Keyspace, key: str) -> Optional[dict]:
        collection = await keyspace.get_collection()
        try:
            result = await self._ctx.get(collection, key)
        except DocumentNotFoundException:
            return None
        self._read[(str(keyspace), key)] = result
        return result.content_as[dict]

    async def insert(self, keyspace: Keyspace, key: str, value: dict) -> None:
        collection = await keyspace.get_collection()
        await self._ctx.insert(collection, key, value)

    async def replace(self, keyspace: Keyspace, key: str, value: dict) -> None:
        previous = self._read.get((str(keyspace), key))
        if previous is None:
            raise RuntimeError(f"Document {key} must be read in the transaction before replace")
        self._read[(str(keyspace), key)] = await self._ctx.replace(previous, value)


async def run_couchbase_transaction(logic: Callable[[Transaction], Awaitable[R]]) -> R:
    """Run *logic* in a Couchbase transaction and return its result.

    Exceptions raised by *logic* roll the attempt back. The SDK reports them
    wrapped in its own failure type, so the original exception is kept and
    re-raised to the caller.
    """
    cluster = await get_cluster()
    outcome: Dict[str, Any] = {}

    async def _attempt(ctx) -> None:
        outcome.pop("error", None)
        try:
            outcome["result"] = await logic(CouchbaseTransaction(ctx))
        except Exception as e:
            outcome["error"] = e
            raise

    try:
        await cluster.transactions.run(_attempt)
    except Exception:
        if "error" in outcome:
            raise outcome["error"]
        raise
    return outcome["result"]
