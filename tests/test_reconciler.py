"""Tests for the key reconciler."""
import pytest

from conftest import RecordingStore, make_key

from authkey_sync.datastore.base import ChangeEvent, ChangeOperation, TypedValue, ValueType
from authkey_sync.datastore.memory import InMemoryDatastore
from authkey_sync.engine import (
    KeyLeaf,
    KeyReconciler,
    PathDecoder,
    PendingAlgorithms,
    algorithm_from_name,
    encode_key_path,
    encode_user_path,
)
from authkey_sync.errors import (
    ItemNotFoundError,
    MissingAlgorithmError,
    StoreError,
    UnexpectedValueError,
    UnsupportedAlgorithmError,
)
from authkey_sync.store.base import KeyAlgorithm


def leaf_event(operation, leaf, old=None, new=None, user="alice", key="laptop"):
    """Build a change event for one authorized-key leaf."""
    path = encode_key_path(user, key, leaf)
    value_type = ValueType.BINARY if leaf == KeyLeaf.KEY_DATA else ValueType.STRING
    return ChangeEvent(
        operation,
        path,
        old_value=TypedValue(path, value_type, old) if old is not None else None,
        new_value=TypedValue(path, value_type, new) if new is not None else None,
    )


async def apply(reconciler, event, pending):
    return await reconciler.reconcile(PathDecoder().decode(event.path), event, pending)


class TestAlgorithmFromName:
    """Tests for algorithm_from_name."""

    @pytest.mark.parametrize("name,expected", [
        ("ssh-dss", KeyAlgorithm.DSA),
        ("ssh-rsa", KeyAlgorithm.RSA),
        ("ecdsa-sha2-nistp256", KeyAlgorithm.ECDSA),
        ("ecdsa-sha2-nistp521", KeyAlgorithm.ECDSA),
    ])
    def test_supported(self, name, expected):
        """Supported names map to their family."""
        assert algorithm_from_name(name) == expected

    @pytest.mark.parametrize("name", ["ssh-ed25519", "rsa-sha2-256", "SSH-RSA", ""])
    def test_unsupported(self, name):
        """Anything else is rejected as a validation failure."""
        with pytest.raises(UnsupportedAlgorithmError) as exc:
            algorithm_from_name(name)

        assert exc.value.validation is True
        assert exc.value.algorithm == name


class TestCreate:
    """Tests for entries being created."""

    @pytest.mark.asyncio
    async def test_algorithm_then_key_data_adds(self, store, rsa_key):
        """Algorithm then key-data of a new entry yields exactly one add."""
        reconciler = KeyReconciler(store, InMemoryDatastore())
        pending = PendingAlgorithms()

        assert await apply(reconciler, leaf_event(ChangeOperation.CREATED, KeyLeaf.ALGORITHM, new="ssh-rsa"), pending) == []
        assert ("alice", "laptop") in pending

        changes = await apply(reconciler, leaf_event(ChangeOperation.CREATED, KeyLeaf.KEY_DATA, new=rsa_key), pending)

        assert store.calls == [("add", rsa_key, KeyAlgorithm.RSA, "alice")]
        assert len(changes) == 1
        assert len(pending) == 0

    @pytest.mark.asyncio
    async def test_key_data_without_algorithm_fails(self, store, rsa_key):
        """Key data of a new entry needs a preceding algorithm."""
        reconciler = KeyReconciler(store, InMemoryDatastore())

        with pytest.raises(MissingAlgorithmError):
            await apply(reconciler, leaf_event(ChangeOperation.CREATED, KeyLeaf.KEY_DATA, new=rsa_key), PendingAlgorithms())

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_algorithm_of_other_entry_not_used(self, store, rsa_key):
        """A pending algorithm pairs only with its own entry."""
        reconciler = KeyReconciler(store, InMemoryDatastore())
        pending = PendingAlgorithms()

        await apply(reconciler, leaf_event(ChangeOperation.CREATED, KeyLeaf.ALGORITHM, new="ssh-rsa", key="other"), pending)

        with pytest.raises(MissingAlgorithmError):
            await apply(reconciler, leaf_event(ChangeOperation.CREATED, KeyLeaf.KEY_DATA, new=rsa_key), pending)
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_unsupported_algorithm_makes_no_calls(self, store):
        """ssh-ed25519 is rejected before the store is touched."""
        reconciler = KeyReconciler(store, InMemoryDatastore())
        pending = PendingAlgorithms()

        with pytest.raises(UnsupportedAlgorithmError):
            await apply(reconciler, leaf_event(ChangeOperation.CREATED, KeyLeaf.ALGORITHM, new="ssh-ed25519"), pending)

        assert store.calls == []
        assert len(pending) == 0

    @pytest.mark.asyncio
    async def test_name_leaf_is_noop(self, store):
        """The name leaf is carried by the path and needs no call."""
        reconciler = KeyReconciler(store, InMemoryDatastore())

        for operation in (ChangeOperation.CREATED, ChangeOperation.MODIFIED, ChangeOperation.DELETED):
            event = leaf_event(operation, KeyLeaf.NAME, old="laptop", new="laptop")
            assert await apply(reconciler, event, PendingAlgorithms()) == []

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_user_name_is_noop(self, store):
        """A user's own name leaf needs no call."""
        reconciler = KeyReconciler(store, InMemoryDatastore())
        path = f"{encode_user_path('alice')}/name"
        event = ChangeEvent(ChangeOperation.CREATED, path, new_value=TypedValue(path, ValueType.STRING, "alice"))

        assert await apply(reconciler, event, PendingAlgorithms()) == []
        assert store.calls == []


class TestDelete:
    """Tests for entries being deleted."""

    @pytest.mark.asyncio
    async def test_key_data_delete_removes(self, store, rsa_key):
        """Deleting the key data removes the old material."""
        store.keys[("alice", rsa_key)] = KeyAlgorithm.RSA
        reconciler = KeyReconciler(store, InMemoryDatastore())
        pending = PendingAlgorithms()

        await apply(reconciler, leaf_event(ChangeOperation.DELETED, KeyLeaf.ALGORITHM, old="ssh-rsa"), pending)
        await apply(reconciler, leaf_event(ChangeOperation.DELETED, KeyLeaf.KEY_DATA, old=rsa_key), pending)

        assert store.calls == [("remove", rsa_key, "alice")]
        assert store.keys == {}

    @pytest.mark.asyncio
    async def test_remove_of_unknown_key_fails(self, store, rsa_key):
        """The store's refusal surfaces as StoreError."""
        reconciler = KeyReconciler(store, InMemoryDatastore())

        with pytest.raises(StoreError):
            await apply(reconciler, leaf_event(ChangeOperation.DELETED, KeyLeaf.KEY_DATA, old=rsa_key), PendingAlgorithms())


class TestModify:
    """Tests for entries being modified."""

    @pytest.mark.asyncio
    async def test_key_data_modify_fetches_algorithm(self, store, state):
        """Without a pending algorithm the current algorithm leaf is read."""
        old_key = state["users"]["alice"]["authorized-keys"]["laptop"]["key-data"]
        new_key = make_key("ssh-rsa", seed=3)
        store.keys[("alice", old_key)] = KeyAlgorithm.RSA
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))

        changes = await apply(
            reconciler,
            leaf_event(ChangeOperation.MODIFIED, KeyLeaf.KEY_DATA, old=old_key, new=new_key),
            PendingAlgorithms(),
        )

        assert store.calls == [
            ("remove", old_key, "alice"),
            ("add", new_key, KeyAlgorithm.RSA, "alice"),
        ]
        assert len(changes) == 2

    @pytest.mark.asyncio
    async def test_key_data_modify_prefers_pending(self, store, state):
        """A pending algorithm of the same entry wins over the datastore."""
        old_key = state["users"]["alice"]["authorized-keys"]["laptop"]["key-data"]
        new_key = make_key("ecdsa-sha2-nistp256", seed=4)
        store.keys[("alice", old_key)] = KeyAlgorithm.RSA
        pending = PendingAlgorithms()
        pending.store(("alice", "laptop"), KeyAlgorithm.ECDSA)
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))

        await apply(
            reconciler,
            leaf_event(ChangeOperation.MODIFIED, KeyLeaf.KEY_DATA, old=old_key, new=new_key),
            pending,
        )

        assert store.calls[-1] == ("add", new_key, KeyAlgorithm.ECDSA, "alice")
        assert len(pending) == 0

    @pytest.mark.asyncio
    async def test_key_data_modify_missing_algorithm_leaf(self, store, rsa_key):
        """A failed algorithm lookup aborts before any store call."""
        reconciler = KeyReconciler(store, InMemoryDatastore())

        with pytest.raises(ItemNotFoundError):
            await apply(
                reconciler,
                leaf_event(ChangeOperation.MODIFIED, KeyLeaf.KEY_DATA, old=rsa_key, new=make_key(seed=5)),
                PendingAlgorithms(),
            )

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_algorithm_modify_is_deferred(self, store, state):
        """Changing the algorithm records a rekey without store calls."""
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))
        pending = PendingAlgorithms()

        changes = await apply(
            reconciler,
            leaf_event(ChangeOperation.MODIFIED, KeyLeaf.ALGORITHM, old="ssh-rsa", new="ssh-dss"),
            pending,
        )

        assert changes == []
        assert store.calls == []
        assert pending.drain_rekeys() == [(("alice", "laptop"), KeyAlgorithm.DSA, KeyAlgorithm.RSA)]

    @pytest.mark.asyncio
    async def test_rekey_re_registers(self, store, state):
        """A rekey removes and re-adds the current key."""
        key = state["users"]["alice"]["authorized-keys"]["laptop"]["key-data"]
        store.keys[("alice", key)] = KeyAlgorithm.RSA
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))

        changes = await reconciler.rekey(("alice", "laptop"), KeyAlgorithm.DSA, KeyAlgorithm.RSA)

        assert store.calls == [
            ("remove", key, "alice"),
            ("add", key, KeyAlgorithm.DSA, "alice"),
        ]
        assert store.keys == {("alice", key): KeyAlgorithm.DSA}
        assert "dsa" in changes[0]

    @pytest.mark.asyncio
    async def test_key_data_modify_supersedes_rekey(self, store, state):
        """Algorithm and key data changed together swap the key once."""
        old_key = state["users"]["alice"]["authorized-keys"]["laptop"]["key-data"]
        new_key = make_key("ecdsa-sha2-nistp256", seed=8)
        store.keys[("alice", old_key)] = KeyAlgorithm.RSA
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))
        pending = PendingAlgorithms()

        await apply(
            reconciler,
            leaf_event(ChangeOperation.MODIFIED, KeyLeaf.ALGORITHM, old="ssh-rsa", new="ecdsa-sha2-nistp256"),
            pending,
        )
        await apply(
            reconciler,
            leaf_event(ChangeOperation.MODIFIED, KeyLeaf.KEY_DATA, old=old_key, new=new_key),
            pending,
        )

        assert store.calls == [
            ("remove", old_key, "alice"),
            ("add", new_key, KeyAlgorithm.ECDSA, "alice"),
        ]
        assert pending.drain_rekeys() == []

    @pytest.mark.asyncio
    async def test_algorithm_modify_to_unsupported(self, store, state):
        """An unsupported new algorithm is rejected with zero calls."""
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))

        with pytest.raises(UnsupportedAlgorithmError):
            await apply(
                reconciler,
                leaf_event(ChangeOperation.MODIFIED, KeyLeaf.ALGORITHM, old="ssh-rsa", new="ssh-ed25519"),
                PendingAlgorithms(),
            )

        assert store.calls == []


class TestCompensation:
    """Tests for restoring a removed key after a failed add."""

    @pytest.mark.asyncio
    async def test_failed_add_restores_old_key(self, state):
        """The old material is re-added when the replacement is refused."""
        old_key = state["users"]["alice"]["authorized-keys"]["laptop"]["key-data"]
        new_key = make_key("ssh-rsa", seed=6)
        store = RecordingStore(failures=["add"])
        store.keys[("alice", old_key)] = KeyAlgorithm.RSA
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))

        with pytest.raises(StoreError):
            await apply(
                reconciler,
                leaf_event(ChangeOperation.MODIFIED, KeyLeaf.KEY_DATA, old=old_key, new=new_key),
                PendingAlgorithms(),
            )

        assert store.kinds() == ["remove", "add", "add"]
        assert store.keys == {("alice", old_key): KeyAlgorithm.RSA}

    @pytest.mark.asyncio
    async def test_failed_algorithm_change_restores(self, state):
        """A refused re-add restores the key under its old algorithm."""
        key = state["users"]["alice"]["authorized-keys"]["laptop"]["key-data"]
        store = RecordingStore(failures=["add"])
        store.keys[("alice", key)] = KeyAlgorithm.RSA
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))

        with pytest.raises(StoreError):
            await reconciler.rekey(("alice", "laptop"), KeyAlgorithm.DSA, KeyAlgorithm.RSA)

        assert store.calls[-1] == ("add", key, KeyAlgorithm.RSA, "alice")
        assert store.keys == {("alice", key): KeyAlgorithm.RSA}

    @pytest.mark.asyncio
    async def test_failed_combined_change_restores_old_algorithm(self, state):
        """A refused add after a combined change restores the old algorithm."""
        old_key = state["users"]["alice"]["authorized-keys"]["laptop"]["key-data"]
        store = RecordingStore(failures=["add"])
        store.keys[("alice", old_key)] = KeyAlgorithm.RSA
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))
        pending = PendingAlgorithms()

        await apply(
            reconciler,
            leaf_event(ChangeOperation.MODIFIED, KeyLeaf.ALGORITHM, old="ssh-rsa", new="ssh-dss"),
            pending,
        )
        with pytest.raises(StoreError):
            await apply(
                reconciler,
                leaf_event(ChangeOperation.MODIFIED, KeyLeaf.KEY_DATA, old=old_key, new=make_key("ssh-dss", seed=9)),
                pending,
            )

        assert store.calls[-1] == ("add", old_key, KeyAlgorithm.RSA, "alice")
        assert store.keys == {("alice", old_key): KeyAlgorithm.RSA}

    @pytest.mark.asyncio
    async def test_failed_remove_skips_add(self, state):
        """A refused remove leaves the add unattempted."""
        old_key = state["users"]["alice"]["authorized-keys"]["laptop"]["key-data"]
        store = RecordingStore(failures=["remove"])
        store.keys[("alice", old_key)] = KeyAlgorithm.RSA
        reconciler = KeyReconciler(store, InMemoryDatastore.from_dict(state))

        with pytest.raises(StoreError):
            await apply(
                reconciler,
                leaf_event(ChangeOperation.MODIFIED, KeyLeaf.KEY_DATA, old=old_key, new=make_key(seed=7)),
                PendingAlgorithms(),
            )

        assert store.kinds() == ["remove"]


class TestUnexpectedValues:
    """Tests for leaves carrying unusable values."""

    @pytest.mark.asyncio
    async def test_missing_new_value(self, store):
        """A created leaf without a value is rejected."""
        reconciler = KeyReconciler(store, InMemoryDatastore())
        event = leaf_event(ChangeOperation.CREATED, KeyLeaf.ALGORITHM)

        with pytest.raises(UnexpectedValueError):
            await apply(reconciler, event, PendingAlgorithms())

    @pytest.mark.asyncio
    async def test_algorithm_with_binary_value(self, store):
        """The algorithm leaf must be a string."""
        reconciler = KeyReconciler(store, InMemoryDatastore())
        path = encode_key_path("alice", "laptop", KeyLeaf.ALGORITHM)
        event = ChangeEvent(ChangeOperation.CREATED, path, new_value=TypedValue(path, ValueType.BINARY, "ssh-rsa"))

        with pytest.raises(UnexpectedValueError):
            await apply(reconciler, event, PendingAlgorithms())
        assert store.calls == []
