"""In-memory configuration datastore.

A path-addressed tree of typed nodes, seeded from a dict or YAML document::

    features:
      local-users: true
    users:
      alice:
        password: "$6$..."
        authorized-keys:
          laptop:
            algorithm: ssh-rsa
            key-data: AAAAB3NzaC1yc2E...

Commits diff the new document against the current tree and notify
subscribers with deletions first, then modifications, then creations. Each
group follows tree order: list entry, ``name``, ``algorithm``, ``key-data``.
"""
import itertools
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import yaml

from ..config.settings import DEFAULT_SYSTEM_ROOT
from ..engine.path import encode_key_path, encode_user_path
from ..engine.schema import KeyLeaf
from ..errors import CommitRejectedError, ItemNotFoundError
from .base import (
    ChangeBatch,
    ChangeEvent,
    ChangeHandler,
    ChangeOperation,
    ConfigDatastore,
    NotificationPhase,
    Subscription,
    TypedValue,
    ValueType,
    selector_matches,
)

logger = logging.getLogger(__name__)


def build_nodes(users: dict[str, Any], system_root: str = DEFAULT_SYSTEM_ROOT) -> dict[str, TypedValue]:
    """
    Build the node map of an ``authentication`` subtree from a users mapping.

    Returns an insertion-ordered dict of path -> TypedValue.
    """
    nodes: dict[str, TypedValue] = {}

    def add(path: str, value_type: ValueType, data: Optional[str] = None) -> None:
        nodes[path] = TypedValue(path=path, type=value_type, data=data)

    add(f"/{system_root}", ValueType.CONTAINER)
    add(f"/{system_root}/authentication", ValueType.CONTAINER)

    for user_id, user in (users or {}).items():
        user = user or {}
        user_id = str(user_id)
        user_path = encode_user_path(user_id, system_root)
        add(user_path, ValueType.LIST)
        add(f"{user_path}/name", ValueType.STRING, user_id)
        if user.get("password") is not None:
            add(f"{user_path}/password", ValueType.STRING, str(user["password"]))

        for key_id, key in (user.get("authorized-keys") or {}).items():
            key = key or {}
            key_id = str(key_id)
            add(encode_key_path(user_id, key_id, system_root=system_root), ValueType.LIST)
            add(
                encode_key_path(user_id, key_id, KeyLeaf.NAME, system_root),
                ValueType.STRING,
                key_id,
            )
            if key.get("algorithm") is not None:
                add(
                    encode_key_path(user_id, key_id, KeyLeaf.ALGORITHM, system_root),
                    ValueType.STRING,
                    str(key["algorithm"]),
                )
            if key.get("key-data") is not None:
                add(
                    encode_key_path(user_id, key_id, KeyLeaf.KEY_DATA, system_root),
                    ValueType.BINARY,
                    "".join(str(key["key-data"]).split()),
                )

    return nodes


def diff_nodes(old: dict[str, TypedValue], new: dict[str, TypedValue]) -> list[ChangeEvent]:
    """
    Compute change events turning ``old`` into ``new``.

    Deletions come first, in old tree order, then modifications and last
    creations, both in new tree order. Key material leaving one entry is
    thus removed before another entry registers it.
    """
    deleted = [
        ChangeEvent(ChangeOperation.DELETED, path, old_value=value)
        for path, value in old.items()
        if path not in new
    ]
    modified = []
    created = []

    for path, value in new.items():
        previous = old.get(path)
        if previous is None:
            created.append(ChangeEvent(ChangeOperation.CREATED, path, new_value=value))
        elif previous.type != value.type or previous.data != value.data:
            modified.append(ChangeEvent(ChangeOperation.MODIFIED, path, previous, value))

    return deleted + modified + created


class InMemoryDatastore(ConfigDatastore):
    """Datastore keeping the whole configuration tree in memory."""

    def __init__(self, system_root: str = DEFAULT_SYSTEM_ROOT):
        self.system_root = system_root
        self._users: dict[str, Any] = {}
        self._nodes: dict[str, TypedValue] = build_nodes({}, system_root)
        self._features: dict[str, bool] = {}
        self._subscriptions: dict[int, tuple[Subscription, ChangeHandler]] = {}
        self._ids = itertools.count(1)

    @classmethod
    def from_dict(cls, data: dict[str, Any], system_root: str = DEFAULT_SYSTEM_ROOT) -> "InMemoryDatastore":
        """Create a datastore from a state document."""
        datastore = cls(system_root)
        for name, enabled in (data.get("features") or {}).items():
            datastore.set_feature(name, bool(enabled))
        datastore._users = dict(data.get("users") or {})
        datastore._nodes = build_nodes(datastore._users, system_root)
        return datastore

    @classmethod
    def from_yaml(cls, state_path: Path, system_root: str = DEFAULT_SYSTEM_ROOT) -> "InMemoryDatastore":
        """Create a datastore from a YAML state file."""
        with open(state_path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data, system_root)

    @property
    def users(self) -> dict[str, Any]:
        return self._users

    # === Features ===

    def is_feature_enabled(self, feature_name: str) -> bool:
        return self._features.get(feature_name, False)

    def set_feature(self, feature_name: str, enabled: bool) -> None:
        self._features[feature_name] = enabled

    # === Reads ===

    async def get_item(self, path: str) -> TypedValue:
        try:
            return self._nodes[path]
        except KeyError:
            raise ItemNotFoundError(f'Failed to get "{path}" from the datastore.')

    async def iter_items(self, selector: str) -> AsyncIterator[TypedValue]:
        # Snapshot so commits during the walk do not disturb it
        for path, value in list(self._nodes.items()):
            if selector_matches(selector, path):
                yield value

    # === Subscriptions ===

    async def subscribe(
        self,
        subtree: str,
        handler: ChangeHandler,
        apply_only: bool = True,
    ) -> Subscription:
        subscription = Subscription(
            subscription_id=next(self._ids),
            subtree=subtree,
            apply_only=apply_only,
        )
        self._subscriptions[subscription.subscription_id] = (subscription, handler)
        logger.debug(f'Subscription {subscription.subscription_id} registered on "{subtree}"')
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.subscription_id, None)

    # === Commits ===

    async def commit(self, users: dict[str, Any]) -> list[ChangeEvent]:
        """
        Replace the users configuration and notify subscribers.

        Subscribers registered without apply_only see a VERIFY batch before
        the tree changes; all subscribers see an APPLY batch after it.

        Returns:
            The change events of the commit

        Raises:
            CommitRejectedError: If a subscriber fails; the previous tree is
                restored
        """
        new_nodes = build_nodes(users, self.system_root)
        events = diff_nodes(self._nodes, new_nodes)
        if not events:
            return events

        await self._notify(NotificationPhase.VERIFY, events, include_apply_only=False)

        old_users, old_nodes = self._users, self._nodes
        self._users, self._nodes = dict(users), new_nodes
        try:
            await self._notify(NotificationPhase.APPLY, events, include_apply_only=True)
        except CommitRejectedError:
            self._users, self._nodes = old_users, old_nodes
            raise

        logger.info(f"Committed {len(events)} change(s)")
        return events

    async def _notify(
        self,
        phase: NotificationPhase,
        events: list[ChangeEvent],
        include_apply_only: bool,
    ) -> None:
        for subscription, handler in list(self._subscriptions.values()):
            if subscription.apply_only and not include_apply_only:
                continue

            scoped = [e for e in events if selector_matches(subscription.subtree, e.path)]
            if not scoped:
                continue

            batch = ChangeBatch(phase=phase, subtree=subscription.subtree, events=scoped)
            result = await handler(batch)
            if not result.success:
                raise CommitRejectedError(
                    f"Commit rejected by subscription {subscription.subscription_id}: "
                    f"{result.error}",
                    result=result,
                )
