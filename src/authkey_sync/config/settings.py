"""Service settings.

Environment variables:
- AUTHKEY_SYNC_SYSTEM_ROOT: Top-level schema node (default: ietf-system:system)
- AUTHKEY_SYNC_FEATURE: Governing feature name (default: local-users)
- AUTHKEY_SYNC_KEYS_DIR: Directory of per-user authorized_keys files
- AUTHKEY_SYNC_AUDIT_DIR: Directory of the audit log
- AUTHKEY_SYNC_STATE_FILE: YAML document seeding the datastore
"""
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_ROOT = "ietf-system:system"
DEFAULT_FEATURE = "local-users"
DEFAULT_KEYS_DIR = "~/.authkey-sync/keys"
DEFAULT_AUDIT_DIR = "~/.authkey-sync"


@dataclass
class SyncSettings:
    """Settings of the authorized-key sync service."""
    system_root: str = DEFAULT_SYSTEM_ROOT
    feature_name: str = DEFAULT_FEATURE
    keys_dir: str = DEFAULT_KEYS_DIR
    audit_dir: str = DEFAULT_AUDIT_DIR
    state_file: Optional[str] = None

    @property
    def keys_path(self) -> Path:
        return Path(os.path.expanduser(self.keys_dir))

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Load settings from environment variables."""
        return cls(
            system_root=os.environ.get("AUTHKEY_SYNC_SYSTEM_ROOT", DEFAULT_SYSTEM_ROOT),
            feature_name=os.environ.get("AUTHKEY_SYNC_FEATURE", DEFAULT_FEATURE),
            keys_dir=os.environ.get("AUTHKEY_SYNC_KEYS_DIR", DEFAULT_KEYS_DIR),
            audit_dir=os.environ.get("AUTHKEY_SYNC_AUDIT_DIR", DEFAULT_AUDIT_DIR),
            state_file=os.environ.get("AUTHKEY_SYNC_STATE_FILE"),
        )

    @classmethod
    def from_file(cls, config_path: Path) -> "SyncSettings":
        """Load settings from a YAML file, over environment defaults.

        Unknown keys are logged and ignored.
        """
        settings = cls.from_env()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Settings file {config_path} must contain a mapping")

        known = {f.name for f in fields(cls)}
        loaded = set()
        for key, value in data.items():
            attr = key.replace("-", "_")
            if attr not in known:
                logger.warning(f"Ignoring unknown setting '{key}' in {config_path}")
                continue
            setattr(settings, attr, value)
            loaded.add(attr)

        # Relative state files resolve against the settings file
        state_file = settings.state_file
        if "state_file" in loaded and state_file and not os.path.isabs(os.path.expanduser(state_file)):
            settings.state_file = str(Path(config_path).parent / settings.state_file)

        return settings
