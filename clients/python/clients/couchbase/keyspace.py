import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
from couchbase.exceptions import DocumentNotFoundException
from couchbase.options import QueryOptions, ReplaceOptions
from .config import get_cluster, DEFAULT_BUCKET_NAME

# (field, descending)
OrderBy = Sequence[Tuple[str, bool]]


def build_select(
    keyspace: str,
    where: Dict[str, Any],
    order_by: Optional[OrderBy] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[str, Dict[str, Any]]:
    """Build a parameterised N1QL SELECT for equality filters.

    ``None`` filter values match documents where the field is NULL or MISSING.
    """
    conditions = []
    params: Dict[str, Any] = {}
    for field, value in where.items():
        if value is None:
            conditions.append(f"(`{field}` IS NULL OR `{field}` IS MISSING)")
        else:
            conditions.append(f"`{field}` = ${field}")
            params[field] = value

    query = f"SELECT META().id, * FROM {keyspace}"
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    if order_by:
        query += " ORDER BY " + ", ".join(
            f"`{field}` {'DESC' if desc else 'ASC'}" for field, desc in order_by
        )
    if limit is not None:
        query += f" LIMIT {int(limit)}"
    if offset:
        query += f" OFFSET {int(offset)}"
    return query, params


@dataclass
class Keyspace:
    bucket_name: str
    scope_name: str
    collection_name: str

    def __str__(self) -> str:
        return f"`{self.bucket_name}`.`{self.scope_name}`.`{self.collection_name}`"

    async def query(self, query: str, **params) -> list:
        cluster = await get_cluster()
        query = query.replace("${keyspace}", str(self))
        options = QueryOptions(named_parameters=params) if params else QueryOptions()
        result = cluster.query(query, options)
        return [row async for row in result]

    async def get_scope(self):
        cluster = await get_cluster()
        bucket = cluster.bucket(self.bucket_name)
        return bucket.scope(self.scope_name)

    async def get_collection(self):
        scope = await self.get_scope()
        return scope.collection(self.collection_name)

    async def get(self, key: str) -> Optional[Tuple[dict, int]]:
        collection = await self.get_collection()
        try:
            result = await collection.get(key)
        except DocumentNotFoundException:
            return None
        return result.content_as[dict], result.cas

    async def insert(self, value: dict, key: Optional[str] = None, **kwargs) -> int:
        if key is None:
            key = str(uuid.uuid4())
        collection = await self.get_collection()
        result = await collection.insert(key, value, **kwargs)
        return result.cas

    async def replace(self, key: str, value: dict, cas: Optional[int] = None) -> int:
        """Replace a document; raises CASMismatchException when *cas* is stale."""
        collection = await self.get_collection()
        if cas:
            result = await collection.replace(key, value, ReplaceOptions(cas=cas))
        else:
            result = await collection.replace(key, value)
        return result.cas

    async def find(
        self,
        where: Dict[str, Any],
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Tuple[str, dict]]:
        query, params = build_select(str(self), where, order_by, limit, offset)
        rows = await self.query(query, **params)
        return [
            (row["id"], row[self.collection_name])
            for row in rows if row.get(self.collection_name)
        ]


def get_keyspace(collection_name: str, scope_name: Optional[str] = "_default", bucket_name: Optional[str] = DEFAULT_BUCKET_NAME) -> Keyspace:
    """
    Create a Keyspace instance with optional scope and bucket parameters.

    Args:
        collection_name: Name of the collection
        scope_name: Name of the scope (defaults to "_default")
        bucket_name: Name of the bucket (defaults to DEFAULT_BUCKET_NAME)

    Returns:
        Keyspace instance
    """
    return Keyspace(bucket_name, scope_name, collection_name)
