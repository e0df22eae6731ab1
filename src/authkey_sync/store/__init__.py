"""Credential store interface and implementations."""
from .base import CredentialStore, Credential, KeyAlgorithm, key_fingerprint
from .authorized_keys import AuthorizedKeysFileStore
from .audited import AuditedCredentialStore

__all__ = [
    "CredentialStore",
    "Credential",
    "KeyAlgorithm",
    "key_fingerprint",
    "AuthorizedKeysFileStore",
    "AuditedCredentialStore",
]
