"""Reconciliation engine - drives a credential store from configuration changes.

The engine consumes ordered change events on the authorized-key subtree:
- Classifies structural (list/container) events away
- Decodes quoted, multi-level paths into typed keys
- Pairs algorithm and key-data leaves into one credential
- Replays the whole subtree when the governing feature is enabled

Usage:
    from authkey_sync.engine import AuthorizedKeySync

    sync = AuthorizedKeySync(datastore, store)
    await sync.start()
"""

from .schema import (
    AuthorizedKeyPath,
    UserNamePath,
    DecodedPath,
    KeyLeaf,
    Classification,
    PendingAlgorithms,
    SyncResult,
)
from .path import (
    PathDecoder,
    encode_key_path,
    encode_user_path,
    watched_subtree,
    authorized_key_selector,
)
from .classifier import classify
from .reconciler import KeyReconciler, algorithm_from_name
from .processor import BatchProcessor
from .resync import BulkResynchronizer
from .bootstrap import AuthorizedKeySync

__all__ = [
    # Service
    "AuthorizedKeySync",
    # Schema classes
    "AuthorizedKeyPath",
    "UserNamePath",
    "DecodedPath",
    "KeyLeaf",
    "Classification",
    "PendingAlgorithms",
    "SyncResult",
    # Paths
    "PathDecoder",
    "encode_key_path",
    "encode_user_path",
    "watched_subtree",
    "authorized_key_selector",
    # Components (for advanced use)
    "classify",
    "KeyReconciler",
    "algorithm_from_name",
    "BatchProcessor",
    "BulkResynchronizer",
]
