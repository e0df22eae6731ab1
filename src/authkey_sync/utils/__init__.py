"""Logging, timing and audit helpers."""
from .logging_config import setup_logging, timed, timed_section, perf_logger
from .audit_log import (
    setup_audit_logging,
    log_credential_change,
    get_recent_changes,
    CredentialChangeRecord,
)

__all__ = [
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "setup_audit_logging",
    "log_credential_change",
    "get_recent_changes",
    "CredentialChangeRecord",
]
