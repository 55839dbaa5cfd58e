"""
Neo4j schema, failure taxonomy and the store adapter used by ingestion.
"""

from .errors import StoreErrorKind, StoreWriteError, classify_store_error
from .store import BatchStore, GraphStore

__all__ = [
    # Failure taxonomy
    "StoreErrorKind",
    "StoreWriteError",
    "classify_store_error",
    # Adapter
    "BatchStore",
    "GraphStore",
]
