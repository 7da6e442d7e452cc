from papertable.infrastructure.stores.kv_store import InMemoryKeyValueStore, SqlAlchemyKeyValueStore
from papertable.infrastructure.stores.model_config_store import ModelConfigStore
from papertable.infrastructure.stores.table_store import TableConfigStore

__all__ = [
    "InMemoryKeyValueStore",
    "SqlAlchemyKeyValueStore",
    "ModelConfigStore",
    "TableConfigStore",
]
