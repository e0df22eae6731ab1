"""Base credential store abstraction."""
import base64
import binascii
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from ..errors import StoreError


class KeyAlgorithm(str, Enum):
    """Key algorithm families understood by the credential store."""
    DSA = "dsa"
    RSA = "rsa"
    ECDSA = "ecdsa"


@dataclass(frozen=True)
class Credential:
    """An algorithm-tagged key owned by a user."""
    algorithm: KeyAlgorithm
    material: str   # base64 SSH public key blob
    owner: str


def decode_material(material: str) -> bytes:
    """Decode base64 key material into the SSH wire-format blob."""
    try:
        return base64.b64decode("".join(material.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise StoreError(f"Key material is not valid base64: {e}")


def key_fingerprint(material: str) -> str:
    """OpenSSH-style SHA256 fingerprint of base64 key material."""
    try:
        blob = decode_material(material)
    except StoreError:
        return "SHA256:invalid"
    digest = base64.b64encode(hashlib.sha256(blob).digest()).decode()
    return f"SHA256:{digest.rstrip('=')}"


class CredentialStore(ABC):
    """Abstract SSH authorized-key registry.

    No retries: failures raise StoreError immediately.
    """

    @abstractmethod
    async def add_credential(self, material: str, algorithm: KeyAlgorithm, owner: str) -> None:
        """Register a public key for an owner."""
        pass

    @abstractmethod
    async def remove_credential(self, material: str, owner: str) -> None:
        """Remove a public key of an owner.

        Raises:
            StoreError: If the key is not registered for the owner
        """
        pass

    @abstractmethod
    async def remove_all_credentials(self) -> None:
        """Unconditionally remove every registered key."""
        pass
