from .config import (
    DEFAULT_BUCKET_NAME,
    get_cluster,
    check_connection,
)
from .keyspace import (
    Keyspace,
    OrderBy,
    build_select,
    get_keyspace,
)
from .transactions import (
    Transaction,
    CouchbaseTransaction,
    run_couchbase_transaction,
)
from .in_memory import (
    InMemoryKeyspace,
    InMemoryStore,
    InMemoryTransaction,
    TransactionConflict,
)
from .store import (
    CouchbaseStore,
    build_store,
    get_store,
    set_store,
    run_transaction,
)
from .base_model import (
    BaseModelCouchbase,
    BaseCouchbaseEntityData,
    DataT,
    T
)

# SDK exceptions callers catch around CAS writes and inserts
from couchbase.exceptions import (
    CASMismatchException,
    DocumentExistsException,
    DocumentNotFoundException,
)
