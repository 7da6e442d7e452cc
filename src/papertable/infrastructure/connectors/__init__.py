from .in_memory_host_repository import InMemoryHostRepository
from .zotero_host_repository import ZoteroHostRepository

__all__ = ["InMemoryHostRepository", "ZoteroHostRepository"]
