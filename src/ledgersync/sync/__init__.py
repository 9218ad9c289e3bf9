"""
Ledger sync -- one JSON blob is the truth, the local cache is the copy.

Pull replaces local datasets with the ones the blob carries. Push writes
the blob back only if nobody moved it since our last look. Without a
write credential everything stays local and nothing is an error.

Backends: GitHub contents API, local directory.
"""

from ..errors import ConflictError, SyncError, TransportError
from .backends import BlobStore, FetchResult, create_backend
from .engine import SyncEngine, Subscription, open_engine

__all__ = [
    "BlobStore",
    "ConflictError",
    "FetchResult",
    "Subscription",
    "SyncEngine",
    "SyncError",
    "TransportError",
    "create_backend",
    "open_engine",
]
