"""Shared fixtures and fakes for the authkey-sync tests."""
import base64

import paramiko
import pytest

from authkey_sync.errors import StoreError
from authkey_sync.store.base import CredentialStore, KeyAlgorithm


def make_key(key_type: str = "ssh-rsa", seed: int = 1) -> str:
    """Build base64 SSH wire-format key material of a given type."""
    message = paramiko.Message()
    message.add_string(key_type)
    message.add_mpint(65537)
    message.add_mpint(seed * 1_000_003 + 12345)
    return base64.b64encode(message.asbytes()).decode()


class RecordingStore(CredentialStore):
    """Credential store fake recording every call.

    ``failures`` lists call kinds ("add", "remove", "remove_all") that fail
    once each, in order.
    """

    def __init__(self, failures=None):
        self.calls: list[tuple] = []
        self.keys: dict[tuple[str, str], KeyAlgorithm] = {}
        self.failures: list[str] = list(failures or [])

    def _maybe_fail(self, kind: str) -> None:
        if self.failures and self.failures[0] == kind:
            self.failures.pop(0)
            raise StoreError(f"{kind} rejected")

    async def add_credential(self, material, algorithm, owner):
        self.calls.append(("add", material, algorithm, owner))
        self._maybe_fail("add")
        self.keys[(owner, material)] = algorithm

    async def remove_credential(self, material, owner):
        self.calls.append(("remove", material, owner))
        self._maybe_fail("remove")
        if (owner, material) not in self.keys:
            raise StoreError(f"Key is not registered for '{owner}'")
        del self.keys[(owner, material)]

    async def remove_all_credentials(self):
        self.calls.append(("remove_all",))
        self._maybe_fail("remove_all")
        self.keys.clear()

    def kinds(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def rsa_key():
    return make_key("ssh-rsa", seed=1)


@pytest.fixture
def state():
    """State document with two users holding one key each."""
    return {
        "features": {"local-users": True},
        "users": {
            "alice": {
                "password": "$6$salt$hash",
                "authorized-keys": {
                    "laptop": {"algorithm": "ssh-rsa", "key-data": make_key("ssh-rsa", 1)},
                },
            },
            "bob": {
                "authorized-keys": {
                    "desktop": {
                        "algorithm": "ecdsa-sha2-nistp256",
                        "key-data": make_key("ecdsa-sha2-nistp256", 2),
                    },
                },
            },
        },
    }
