"""Audit logging for credential store changes.

Every add/remove/wipe issued against the credential store is written as
one JSON line to a dedicated audit log file.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

audit_logger = logging.getLogger("authkey_sync.audit")

DEFAULT_AUDIT_DIR = "~/.authkey-sync"


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.authkey-sync/

    Returns:
        Path of the audit log file
    """
    log_dir = os.path.expanduser(log_dir or DEFAULT_AUDIT_DIR)
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    audit_file = Path(log_dir) / "audit.log"

    audit_logger.setLevel(logging.INFO)
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Don't propagate to the application loggers
    audit_logger.propagate = False

    return audit_file


@dataclass
class CredentialChangeRecord:
    """Record of one credential store operation."""
    timestamp: str
    operation: str  # add, remove, remove_all
    owner: Optional[str]
    algorithm: Optional[str]
    fingerprint: Optional[str]
    success: bool
    error: Optional[str] = None

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), indent=None)

    @classmethod
    def from_json(cls, json_str: str) -> "CredentialChangeRecord":
        """Parse from JSON string."""
        return cls(**json.loads(json_str))


def log_credential_change(
    operation: str,
    success: bool,
    owner: Optional[str] = None,
    algorithm: Optional[str] = None,
    fingerprint: Optional[str] = None,
    error: Optional[str] = None,
) -> CredentialChangeRecord:
    """Write one credential change to the audit log."""
    record = CredentialChangeRecord(
        timestamp=datetime.now(timezone.utc).isoformat(),
        operation=operation,
        owner=owner,
        algorithm=algorithm,
        fingerprint=fingerprint,
        success=success,
        error=error,
    )
    audit_logger.info(record.to_json())
    return record


def get_recent_changes(
    log_file: Optional[str] = None,
    owner: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[CredentialChangeRecord]:
    """Read recent changes from the audit log.

    Args:
        log_file: Path to audit log. Defaults to ~/.authkey-sync/audit.log
        owner: Filter by key owner
        operation: Filter by operation type
        limit: Maximum number of records to return

    Returns:
        List of records, most recent first
    """
    if log_file is None:
        log_file = os.path.join(os.path.expanduser(DEFAULT_AUDIT_DIR), "audit.log")

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = CredentialChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if owner and record.owner != owner:
                continue
            if operation and record.operation != operation:
                continue
            records.append(record)

    if limit <= 0:
        return []
    return list(reversed(records[-limit:]))
