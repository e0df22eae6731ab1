"""Credential store wrapper writing every operation to the audit log."""
from typing import Optional

from ..utils.audit_log import log_credential_change
from .base import CredentialStore, KeyAlgorithm, key_fingerprint


class AuditedCredentialStore(CredentialStore):
    """Delegate to another store and audit each call, successful or not."""

    def __init__(self, store: CredentialStore):
        self.store = store

    async def add_credential(self, material: str, algorithm: KeyAlgorithm, owner: str) -> None:
        error: Optional[str] = "interrupted"
        try:
            await self.store.add_credential(material, algorithm, owner)
            error = None
        except Exception as e:
            error = str(e)
            raise
        finally:
            log_credential_change(
                "add",
                success=error is None,
                owner=owner,
                algorithm=algorithm.value,
                fingerprint=key_fingerprint(material),
                error=error,
            )

    async def remove_credential(self, material: str, owner: str) -> None:
        error: Optional[str] = "interrupted"
        try:
            await self.store.remove_credential(material, owner)
            error = None
        except Exception as e:
            error = str(e)
            raise
        finally:
            log_credential_change(
                "remove",
                success=error is None,
                owner=owner,
                fingerprint=key_fingerprint(material),
                error=error,
            )

    async def remove_all_credentials(self) -> None:
        error: Optional[str] = "interrupted"
        try:
            await self.store.remove_all_credentials()
            error = None
        except Exception as e:
            error = str(e)
            raise
        finally:
            log_credential_change("remove_all", success=error is None, error=error)
