"""Document persistence: gateway contract, layout and implementations."""

from cardquest.store.gateway import SERVER_TIMESTAMP, Document, Filter, PersistenceGateway
from cardquest.store.memory import InMemoryDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "Document",
    "Filter",
    "InMemoryDocumentStore",
    "PersistenceGateway",
]
