import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TypeVar, Generic, List, ClassVar
from pydantic import BaseModel, field_serializer
from .keyspace import OrderBy
from .store import get_store
from .transactions import Transaction

# Fixed width so stored timestamps order correctly as strings.
STORED_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_stored_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(STORED_DATETIME_FORMAT)


class BaseCouchbaseEntityData(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by_user_id: Optional[str] = None

    @field_serializer("*", mode="wrap", when_used="json")
    def _serialize_datetimes(self, value: Any, handler):
        if isinstance(value, datetime):
            return format_stored_datetime(value)
        return handler(value)

DataT = TypeVar("DataT", bound=BaseCouchbaseEntityData)
T = TypeVar("T", bound="BaseModelCouchbase")

class BaseModelCouchbase(BaseModel, Generic[DataT]):
    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    @staticmethod
    def to_document(data: DataT) -> dict:
        """Serialize entity data for storage (datetimes as ISO strings)."""
        return data.model_dump(mode='json')

    @staticmethod
    def _stamp(data: DataT, user_id: Optional[str] = None) -> None:
        now = datetime.now(timezone.utc)
        if data.created_at is None:
            data.created_at = now
        data.updated_at = now
        if user_id:
            data.created_by_user_id = user_id

    @classmethod
    def get_keyspace(cls):
        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return get_store().keyspace(cls._collection_name)

    @classmethod
    async def get(cls: type[T], id: str) -> Optional[T]:
        found = await cls.get_keyspace().get(id)
        if found is None:
            return None
        data, cas = found
        return cls(id=id, data=data, cas=cas)

    @classmethod
    async def create(cls: type[T], data: DataT, key: Optional[str] = None, user_id: Optional[str] = None) -> T:
        """Insert a new document; raises DocumentExistsException if *key* is taken."""
        if key is None:
            key = str(uuid.uuid4())
        cls._stamp(data, user_id)
        cas = await cls.get_keyspace().insert(cls.to_document(data), key=key)
        return cls(id=key, data=data, cas=cas)

    @classmethod
    async def update(cls: type[T], item: T) -> T:
        """Replace the document, guarded by the CAS it was read with.

        Raises CASMismatchException when another writer got there first.
        """
        item.data.updated_at = datetime.now(timezone.utc)
        item.cas = await cls.get_keyspace().replace(item.id, cls.to_document(item.data), cas=item.cas)
        return item

    @classmethod
    async def find(
        cls: type[T],
        where: Dict[str, Any],
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[T]:
        rows = await cls.get_keyspace().find(where, order_by=order_by, limit=limit, offset=offset)
        return [cls(id=key, data=doc) for key, doc in rows]

    @classmethod
    async def find_one(cls: type[T], where: Dict[str, Any]) -> Optional[T]:
        items = await cls.find(where, limit=1)
        return items[0] if items else None

    # -- transactional access -------------------------------------------------

    @classmethod
    async def txn_get(cls: type[T], txn: Transaction, id: str) -> Optional[T]:
        doc = await txn.get(cls.get_keyspace(), id)
        if doc is None:
            return None
        return cls(id=id, data=doc)

    @classmethod
    async def txn_insert(cls: type[T], txn: Transaction, data: DataT, key: Optional[str] = None, user_id: Optional[str] = None) -> T:
        if key is None:
            key = str(uuid.uuid4())
        cls._stamp(data, user_id)
        await txn.insert(cls.get_keyspace(), key, cls.to_document(data))
        return cls(id=key, data=data)

    @classmethod
    async def txn_replace(cls: type[T], txn: Transaction, item: T) -> T:
        item.data.updated_at = datetime.now(timezone.utc)
        await txn.replace(cls.get_keyspace(), item.id, cls.to_document(item.data))
        return item
