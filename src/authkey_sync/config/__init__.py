"""Service settings."""
from .settings import SyncSettings, DEFAULT_SYSTEM_ROOT, DEFAULT_FEATURE

__all__ = ["SyncSettings", "DEFAULT_SYSTEM_ROOT", "DEFAULT_FEATURE"]
