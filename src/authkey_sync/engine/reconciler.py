"""Key reconciler.

Turns leaf-level changes of an authorized-key entry into add/remove calls
against the credential store. The ``algorithm`` and ``key-data`` leaves of
an entry arrive as separate events but form one credential, so algorithms
of newly created entries are held in PendingAlgorithms until the entry's
key data is seen. Algorithm changes of existing entries are re-registered
at the end of the batch (see ``KeyReconciler.rekey``) unless the entry's key
data changes in the same batch.
"""
import logging
from typing import Optional

from ..config.settings import DEFAULT_SYSTEM_ROOT
from ..datastore.base import (
    ChangeEvent,
    ChangeOperation,
    ConfigDatastore,
    TypedValue,
    ValueType,
)
from ..errors import (
    MissingAlgorithmError,
    StoreError,
    UnexpectedValueError,
    UnsupportedAlgorithmError,
)
from ..store.base import CredentialStore, KeyAlgorithm
from .path import encode_key_path
from .schema import (
    AuthorizedKeyPath,
    DecodedPath,
    KeyLeaf,
    PendingAlgorithms,
    UserNamePath,
)

logger = logging.getLogger(__name__)

ECDSA_PREFIX = "ecdsa-sha2-"


def algorithm_from_name(name: str) -> KeyAlgorithm:
    """
    Map a configured algorithm name to the store's algorithm family.

    Raises:
        UnsupportedAlgorithmError: For anything but ssh-dss, ssh-rsa and
            ecdsa-sha2-*
    """
    if name == "ssh-dss":
        return KeyAlgorithm.DSA
    if name == "ssh-rsa":
        return KeyAlgorithm.RSA
    if name.startswith(ECDSA_PREFIX):
        return KeyAlgorithm.ECDSA
    raise UnsupportedAlgorithmError(name)


class KeyReconciler:
    """Reconcile one classified change event against the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        datastore: ConfigDatastore,
        system_root: str = DEFAULT_SYSTEM_ROOT,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Credential store receiving add/remove calls
            datastore: Datastore used to look up sibling leaves
            system_root: Top-level node of the watched schema
        """
        self.store = store
        self.datastore = datastore
        self.system_root = system_root

    async def fetch_leaf(self, user_id: str, key_id: str, leaf: KeyLeaf) -> TypedValue:
        """Look up the current value of a leaf not carried by the event."""
        path = encode_key_path(user_id, key_id, leaf, self.system_root)
        return await self.datastore.get_item(path)

    async def reconcile(
        self,
        path: DecodedPath,
        event: ChangeEvent,
        pending: PendingAlgorithms,
    ) -> list[str]:
        """
        Apply one change event.

        Args:
            path: Decoded event path
            event: The change event
            pending: Algorithms awaiting their key data in this batch

        Returns:
            Human-readable descriptions of the store changes made

        Raises:
            ReconcileError: On any failure; no half-applied remove+add pair
                is left behind
        """
        logger.debug(f'Path "{event.path}" {event.operation.value}.')

        if isinstance(path, UserNamePath):
            return []
        if event.operation == ChangeOperation.MOVED:
            return []

        if path.leaf == KeyLeaf.NAME:
            # The name is carried in the path
            return []
        if path.leaf == KeyLeaf.ALGORITHM:
            return await self._reconcile_algorithm(path, event, pending)
        return await self._reconcile_key_data(path, event, pending)

    async def _reconcile_algorithm(
        self,
        path: AuthorizedKeyPath,
        event: ChangeEvent,
        pending: PendingAlgorithms,
    ) -> list[str]:
        if event.operation == ChangeOperation.DELETED:
            # Removal happens with the key-data leaf
            return []

        name = _leaf_text(event.new_value, event, ValueType.STRING)
        algorithm = algorithm_from_name(name)
        pending.store(path.entry, algorithm)

        if event.operation == ChangeOperation.MODIFIED:
            # A key-data change later in the batch re-registers the key itself
            pending.defer_rekey(path.entry, algorithm, _optional_algorithm(event.old_value))
        return []

    async def rekey(
        self,
        entry: tuple[str, str],
        algorithm: KeyAlgorithm,
        previous: Optional[KeyAlgorithm],
    ) -> list[str]:
        """
        Re-register the current key of an entry under a new algorithm.

        The store has no in-place algorithm change, so the key is removed
        and added back. A refused add restores the previous registration.
        """
        user_id, key_id = entry
        key_data = await self.fetch_leaf(user_id, key_id, KeyLeaf.KEY_DATA)
        if key_data.data is None or not key_data.type.is_leaf:
            raise UnexpectedValueError(f'Unexpected value at "{key_data.path}".')
        material = key_data.data

        await self.store.remove_credential(material, user_id)
        try:
            await self.store.add_credential(material, algorithm, user_id)
        except StoreError:
            await self._restore(material, previous, user_id)
            raise

        return [f"Re-registered key '{key_id}' of user '{user_id}' as {algorithm.value}"]

    async def _reconcile_key_data(
        self,
        path: AuthorizedKeyPath,
        event: ChangeEvent,
        pending: PendingAlgorithms,
    ) -> list[str]:
        changes: list[str] = []
        operation = event.operation

        # Resolve everything before the first store call
        old_material: Optional[str] = None
        new_material: Optional[str] = None
        algorithm: Optional[KeyAlgorithm] = None

        if operation != ChangeOperation.CREATED:
            old_material = _leaf_text(event.old_value, event)

        if operation != ChangeOperation.DELETED:
            new_material = _leaf_text(event.new_value, event)
            algorithm = pending.consume(path.entry)
            if algorithm is None:
                if operation == ChangeOperation.CREATED:
                    raise MissingAlgorithmError(
                        f"Key data of key '{path.key_id}' of user '{path.user_id}' "
                        f"arrived without an algorithm."
                    )
                current = await self.fetch_leaf(path.user_id, path.key_id, KeyLeaf.ALGORITHM)
                algorithm = algorithm_from_name(_leaf_text(current, event, ValueType.STRING))

        # This change re-registers the key, superseding a deferred rekey
        restore_algorithm = algorithm
        rekey = pending.cancel_rekey(path.entry)
        if rekey is not None:
            restore_algorithm = rekey[1]

        if old_material is not None:
            await self.store.remove_credential(old_material, path.user_id)
            changes.append(f"Removed key '{path.key_id}' of user '{path.user_id}'")

        if new_material is not None and algorithm is not None:
            try:
                await self.store.add_credential(new_material, algorithm, path.user_id)
            except StoreError:
                if old_material is not None:
                    await self._restore(old_material, restore_algorithm, path.user_id)
                raise
            changes.append(
                f"Added {algorithm.value} key '{path.key_id}' for user '{path.user_id}'"
            )

        return changes

    async def _restore(
        self,
        material: str,
        algorithm: Optional[KeyAlgorithm],
        owner: str,
    ) -> None:
        """Re-add a credential removed by a failed remove+add pair."""
        if algorithm is None:
            logger.error(f"Cannot restore key of user '{owner}': previous algorithm unknown")
            return

        logger.warning(f"Restoring previous key of user '{owner}' after failed re-add")
        try:
            await self.store.add_credential(material, algorithm, owner)
        except StoreError as e:
            logger.error(f"Failed to restore key of user '{owner}': {e}")


def _leaf_text(
    value: Optional[TypedValue],
    event: ChangeEvent,
    expected: Optional[ValueType] = None,
) -> str:
    """Extract the data of a leaf value, rejecting unexpected shapes."""
    if value is None or value.data is None or not value.type.is_leaf:
        raise UnexpectedValueError(f'Unexpected value at "{event.path}".')
    if expected is not None and value.type != expected:
        raise UnexpectedValueError(
            f'Expected a {expected.value} value at "{event.path}", got {value.type.value}.'
        )
    return value.data


def _optional_algorithm(value: Optional[TypedValue]) -> Optional[KeyAlgorithm]:
    """Map a previous algorithm value, tolerating an unusable one."""
    if value is None or value.data is None:
        return None
    try:
        return algorithm_from_name(value.data)
    except UnsupportedAlgorithmError:
        return None
