"""Schema definitions for the reconciliation engine.

Defines decoded paths, the pending-algorithm accumulator and results.
Datastore value and event types live in ``datastore.base``.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from ..store.base import KeyAlgorithm


class Classification(str, Enum):
    """Whether an event carries credential-level meaning."""
    PROCESS = "process"
    SKIP = "skip"


class KeyLeaf(str, Enum):
    """Leaves of an authorized-key list entry."""
    NAME = "name"
    ALGORITHM = "algorithm"
    KEY_DATA = "key-data"


@dataclass(frozen=True)
class AuthorizedKeyPath:
    """Decoded path of a leaf inside an authorized-key entry."""
    user_id: str
    key_id: str
    leaf: KeyLeaf

    @property
    def entry(self) -> tuple[str, str]:
        return (self.user_id, self.key_id)


@dataclass(frozen=True)
class UserNamePath:
    """Decoded path of a user's own name leaf. Requires no action."""
    user_id: str


DecodedPath = Union[AuthorizedKeyPath, UserNamePath]


class PendingAlgorithms:
    """Algorithms seen for entries whose key data is still outstanding.

    Scoped to one batch or one bulk walk. Also tracks entries whose
    algorithm was modified: their re-registration waits for the end of the
    batch, unless a key-data change of the same entry takes it over.
    """

    def __init__(self):
        self._slots: dict[tuple[str, str], KeyAlgorithm] = {}
        # entry -> (new algorithm, previous algorithm)
        self._rekeys: dict[tuple[str, str], tuple[KeyAlgorithm, Optional[KeyAlgorithm]]] = {}

    def store(self, entry: tuple[str, str], algorithm: KeyAlgorithm) -> None:
        self._slots[entry] = algorithm

    def get(self, entry: tuple[str, str]) -> Optional[KeyAlgorithm]:
        return self._slots.get(entry)

    def consume(self, entry: tuple[str, str]) -> Optional[KeyAlgorithm]:
        return self._slots.pop(entry, None)

    def defer_rekey(
        self,
        entry: tuple[str, str],
        algorithm: KeyAlgorithm,
        previous: Optional[KeyAlgorithm],
    ) -> None:
        """Record an algorithm change to re-register at the end of the batch."""
        if entry in self._rekeys:
            # Keep the algorithm the store still holds
            previous = self._rekeys[entry][1]
        self._rekeys[entry] = (algorithm, previous)

    def cancel_rekey(
        self, entry: tuple[str, str]
    ) -> Optional[tuple[KeyAlgorithm, Optional[KeyAlgorithm]]]:
        return self._rekeys.pop(entry, None)

    def drain_rekeys(self) -> list[tuple[tuple[str, str], KeyAlgorithm, Optional[KeyAlgorithm]]]:
        """Take every outstanding re-registration, in recording order."""
        rekeys = [(entry, new, old) for entry, (new, old) in self._rekeys.items()]
        self._rekeys.clear()
        return rekeys

    def clear(self) -> None:
        self._slots.clear()
        self._rekeys.clear()

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, entry: tuple[str, str]) -> bool:
        return entry in self._slots


# --- Results ---

@dataclass
class SyncResult:
    """Result of a change batch, a bulk walk or a feature toggle."""
    operation: str = "batch"   # batch, resync, wipe, ignored
    success: bool = False
    events_seen: int = 0
    events_skipped: int = 0
    events_processed: int = 0
    changes_made: list[str] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    failed_path: Optional[str] = None
    validation_failure: bool = False

    @property
    def rejected(self) -> bool:
        """True when the failure should reject the configuration change."""
        return not self.success and self.validation_failure

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "operation": self.operation,
            "success": self.success,
            "events_seen": self.events_seen,
            "events_skipped": self.events_skipped,
            "events_processed": self.events_processed,
            "changes_made": self.changes_made,
            "error": self.error,
            "error_kind": self.error_kind,
            "failed_path": self.failed_path,
            "rejected": self.rejected,
        }
