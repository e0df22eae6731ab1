"""Base configuration datastore abstraction."""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, Optional


class ChangeOperation(str, Enum):
    """Operation reported for a node in a commit."""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"     # User-ordered list reorder


class ValueType(str, Enum):
    """Datastore value type tag."""
    LIST = "list"
    CONTAINER = "container"
    STRING = "string"
    BINARY = "binary"

    @property
    def is_leaf(self) -> bool:
        return self in (ValueType.STRING, ValueType.BINARY)


class NotificationPhase(str, Enum):
    """Phase of a commit a change batch is delivered in."""
    VERIFY = "verify"
    APPLY = "apply"
    ABORT = "abort"


@dataclass(frozen=True)
class TypedValue:
    """A node value as handed out by the datastore."""
    path: str
    type: ValueType
    data: Optional[str] = None


@dataclass(frozen=True)
class ChangeEvent:
    """A single node change within a commit."""
    operation: ChangeOperation
    path: str
    old_value: Optional[TypedValue] = None
    new_value: Optional[TypedValue] = None

    def values(self) -> Iterator[TypedValue]:
        """Iterate over the values present on the event."""
        for value in (self.old_value, self.new_value):
            if value is not None:
                yield value


# Any list predicate, used to turn instance paths into schema paths
_PREDICATE = re.compile(r"""\[[^=\]]+=(?:'[^']*'|"[^"]*")\]""")


def schema_path(path: str) -> str:
    """Strip list predicates: ``/a/user[name='x']/b`` -> ``/a/user/b``."""
    return _PREDICATE.sub("", path)


def selector_matches(selector: str, path: str) -> bool:
    """
    Check whether an instance path falls under a schema selector.

    A selector ending in ``//*`` matches strict descendants only; any other
    selector matches the node itself and its descendants.
    """
    node = schema_path(path)
    if selector.endswith("//*"):
        return node.startswith(selector[:-3] + "/")
    selector = selector.rstrip("/")
    return node == selector or node.startswith(selector + "/")


@dataclass
class ChangeBatch:
    """All changes of one commit under a subscribed subtree."""
    phase: NotificationPhase
    subtree: str
    events: list[ChangeEvent] = field(default_factory=list)

    def changes(self, selector: str) -> Iterator[ChangeEvent]:
        """Iterate over events whose path matches a schema selector."""
        for event in self.events:
            if selector_matches(selector, event.path):
                yield event


# Handlers return a result object exposing ``success`` and ``rejected``
ChangeHandler = Callable[[ChangeBatch], Awaitable[Any]]


@dataclass(frozen=True)
class Subscription:
    """Handle of a registered change subscription."""
    subscription_id: int
    subtree: str
    apply_only: bool = True


class ConfigDatastore(ABC):
    """Abstract hierarchical configuration datastore."""

    @abstractmethod
    async def subscribe(
        self,
        subtree: str,
        handler: ChangeHandler,
        apply_only: bool = True,
    ) -> Subscription:
        """Register a handler for commits touching a subtree.

        Raises:
            DatastoreError: If the subscription cannot be registered
        """
        pass

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription."""
        pass

    @abstractmethod
    async def get_item(self, path: str) -> TypedValue:
        """Get a single node value.

        Raises:
            ItemNotFoundError: If no node exists at the path
        """
        pass

    @abstractmethod
    def iter_items(self, selector: str) -> AsyncIterator[TypedValue]:
        """Iterate over every current node matching a schema selector."""
        pass

    @abstractmethod
    def is_feature_enabled(self, feature_name: str) -> bool:
        """Check whether a schema feature is enabled."""
        pass
