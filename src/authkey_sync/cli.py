#!/usr/bin/env python3
"""authkey-sync command line.

Usage:
    authkey-sync [--config FILE] sync [--state FILE]
    authkey-sync [--config FILE] disable
    authkey-sync decode PATH
    authkey-sync [--config FILE] list [--owner USER]
    authkey-sync [--config FILE] history [--owner USER] [--limit N]

Environment variables:
    AUTHKEY_SYNC_KEYS_DIR       Directory of per-user authorized_keys files
    AUTHKEY_SYNC_STATE_FILE     YAML document seeding the datastore
    AUTHKEY_SYNC_LOG_LEVEL      Console log level (default: INFO)
"""
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from .config.settings import SyncSettings
from .datastore.memory import InMemoryDatastore
from .engine import AuthorizedKeySync, PathDecoder
from .errors import BootstrapError, MalformedPathError
from .store import AuditedCredentialStore, AuthorizedKeysFileStore
from .utils.audit_log import get_recent_changes, setup_audit_logging
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authkey-sync",
        description="Reconcile SSH authorized keys with the configuration datastore",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Apply the whole configuration of a state file
    authkey-sync sync --state state.yaml

    # Feature switched off: wipe every managed key
    authkey-sync disable

    # Inspect how a datastore path decodes
    authkey-sync decode "/ietf-system:system/authentication/user[name='alice']/authorized-key[name='laptop']/key-data"
        """,
    )
    parser.add_argument("--config", type=Path, help="Settings YAML file")
    parser.add_argument("--keys-dir", help="Override the authorized_keys directory")
    parser.add_argument("--no-log-file", action="store_true", help="Log to the console only")

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Apply the current configuration")
    sync.add_argument("--state", type=Path, help="YAML state file seeding the datastore")

    commands.add_parser("disable", help="Apply the feature as disabled (remove all keys)")

    decode = commands.add_parser("decode", help="Decode a datastore path")
    decode.add_argument("path")

    listing = commands.add_parser("list", help="List registered keys")
    listing.add_argument("--owner")

    history = commands.add_parser("history", help="Show recent credential changes")
    history.add_argument("--owner")
    history.add_argument("--limit", type=int, default=20)

    return parser


def load_settings(args: argparse.Namespace) -> SyncSettings:
    settings = SyncSettings.from_file(args.config) if args.config else SyncSettings.from_env()
    if args.keys_dir:
        settings.keys_dir = args.keys_dir
    if getattr(args, "state", None):
        settings.state_file = str(args.state)
    return settings


def build_store(settings: SyncSettings) -> AuditedCredentialStore:
    setup_audit_logging(settings.audit_dir)
    return AuditedCredentialStore(AuthorizedKeysFileStore(settings.keys_path))


async def run_sync(settings: SyncSettings) -> int:
    if not settings.state_file:
        print("No state file given (--state or AUTHKEY_SYNC_STATE_FILE)", file=sys.stderr)
        return 1

    datastore = InMemoryDatastore.from_yaml(Path(settings.state_file), settings.system_root)
    service = AuthorizedKeySync(datastore, build_store(settings), settings)

    try:
        result = await service.start()
    except BootstrapError as e:
        print(f"Sync failed: {e}", file=sys.stderr)
        return 1
    finally:
        await service.stop()

    if result is None:
        print(f'Feature "{settings.feature_name}" is disabled, nothing to apply')
        return 0

    print(json.dumps(result.to_dict(), indent=2))
    return 0


async def run_disable(settings: SyncSettings) -> int:
    service = AuthorizedKeySync(InMemoryDatastore(settings.system_root), build_store(settings), settings)
    result = await service.apply_feature_state(settings.feature_name, False)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def run_decode(path: str, system_root: str) -> int:
    try:
        decoded = PathDecoder(system_root).decode(path)
    except MalformedPathError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(json.dumps({"type": type(decoded).__name__, **asdict(decoded)}, indent=2))
    return 0


def run_list(settings: SyncSettings, owner: Optional[str]) -> int:
    keys = AuthorizedKeysFileStore(settings.keys_path).list_credentials(owner)
    if not keys:
        print("No keys registered")
        return 0
    for name, lines in keys.items():
        print(f"{name}:")
        for line in lines:
            print(f"  {line}")
    return 0


def run_history(settings: SyncSettings, owner: Optional[str], limit: int) -> int:
    log_file = str(Path(settings.audit_dir).expanduser() / "audit.log")
    records = get_recent_changes(log_file, owner=owner, limit=limit)
    for record in records:
        status = "OK" if record.success else f"FAIL ({record.error})"
        print(
            f"{record.timestamp} {record.operation:10s} "
            f"{record.owner or '-':12s} {record.fingerprint or '-'} {status}"
        )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.no_log_file:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        setup_logging()

    if args.command == "decode":
        return run_decode(args.path, SyncSettings.from_env().system_root)

    settings = load_settings(args)

    if args.command == "sync":
        return asyncio.run(run_sync(settings))
    if args.command == "disable":
        return asyncio.run(run_disable(settings))
    if args.command == "list":
        return run_list(settings, args.owner)
    return run_history(settings, args.owner, args.limit)


if __name__ == "__main__":
    sys.exit(main())
