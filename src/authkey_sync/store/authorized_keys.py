"""Credential store backed by OpenSSH authorized_keys files.

Each owner gets ``<keys_dir>/<owner>/authorized_keys``. Lines are written as
``<key-type> <base64-blob> <owner>``; the key type is read from the blob.
"""
import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

import paramiko

from ..errors import StoreError
from .base import CredentialStore, KeyAlgorithm, decode_material

logger = logging.getLogger(__name__)

AUTHORIZED_KEYS = "authorized_keys"

# Wire-format key type names accepted per algorithm family
ALGORITHM_KEY_TYPES = {
    KeyAlgorithm.DSA: ("ssh-dss",),
    KeyAlgorithm.RSA: ("ssh-rsa",),
    KeyAlgorithm.ECDSA: ("ecdsa-sha2-",),
}


def blob_key_type(material: str) -> str:
    """
    Read the key type name embedded in an SSH public key blob.

    Raises:
        StoreError: If the material is not a decodable SSH key blob
    """
    blob = decode_material(material)
    try:
        key_type = paramiko.Message(blob).get_text()
    except (UnicodeDecodeError, ValueError, paramiko.SSHException) as e:
        raise StoreError(f"Key material is not an SSH public key blob: {e}")
    if not key_type or not key_type.isprintable() or " " in key_type:
        raise StoreError("Key material is not an SSH public key blob")
    return key_type


def check_algorithm(key_type: str, algorithm: KeyAlgorithm) -> None:
    """Ensure a blob's key type belongs to the requested algorithm family."""
    if not any(key_type.startswith(prefix) for prefix in ALGORITHM_KEY_TYPES[algorithm]):
        raise StoreError(f"Key type {key_type} does not match algorithm {algorithm.value}")


class AuthorizedKeysFileStore(CredentialStore):
    """Maintain per-user authorized_keys files under one directory."""

    def __init__(self, keys_dir: Path):
        self.keys_dir = Path(keys_dir)

    def _owner_file(self, owner: str) -> Path:
        if not owner or owner in (".", "..") or "/" in owner or "\\" in owner or "\0" in owner:
            raise StoreError(f"Invalid key owner: {owner!r}")
        return self.keys_dir / owner / AUTHORIZED_KEYS

    async def add_credential(self, material: str, algorithm: KeyAlgorithm, owner: str) -> None:
        key_type = blob_key_type(material)
        check_algorithm(key_type, algorithm)
        material = "".join(material.split())
        path = self._owner_file(owner)

        lines = await self._run(self._read_lines, path)
        if any(_line_material(line) == material for line in lines):
            logger.debug(f"Key already registered for '{owner}'")
            return

        lines.append(f"{key_type} {material} {owner}")
        await self._run(self._write_lines, path, lines)
        logger.info(f"Added {key_type} key for '{owner}'")

    async def remove_credential(self, material: str, owner: str) -> None:
        material = "".join(material.split())
        path = self._owner_file(owner)

        lines = await self._run(self._read_lines, path)
        kept = [line for line in lines if _line_material(line) != material]
        if len(kept) == len(lines):
            raise StoreError(f"Key is not registered for '{owner}'")

        await self._run(self._write_lines, path, kept)
        logger.info(f"Removed key of '{owner}'")

    async def remove_all_credentials(self) -> None:
        await self._run(self._wipe)
        logger.info(f"Removed all keys under {self.keys_dir}")

    def list_credentials(self, owner: Optional[str] = None) -> dict[str, list[str]]:
        """Registered key lines per owner."""
        if not self.keys_dir.exists():
            return {}

        owners = [owner] if owner else sorted(p.name for p in self.keys_dir.iterdir() if p.is_dir())
        result = {}
        for name in owners:
            lines = self._read_lines(self._owner_file(name))
            if lines:
                result[name] = lines
        return result

    async def _run(self, func, *args):
        """Run blocking file I/O off the event loop, mapping OS errors."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except OSError as e:
            raise StoreError(f"Credential store unavailable: {e}")

    def _read_lines(self, path: Path) -> list[str]:
        if not path.exists():
            return []
        with open(path, encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip() and not line.startswith("#")]

    def _write_lines(self, path: Path, lines: list[str]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".authorized_keys.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.writelines(f"{line}\n" for line in lines)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _wipe(self) -> None:
        if not self.keys_dir.exists():
            return
        for owner_dir in self.keys_dir.iterdir():
            if owner_dir.is_dir():
                shutil.rmtree(owner_dir)


def _line_material(line: str) -> Optional[str]:
    parts = line.split()
    return parts[1] if len(parts) >= 2 else None
