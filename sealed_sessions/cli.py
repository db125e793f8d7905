#!/usr/bin/env python3
"""Command-line interface for deriving session keys and managing encrypted sessions."""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import ValidationError

from .exceptions import NotFound, SessionVaultError
from .vault.config import VaultConfig
from .vault.crypto import Keypair
from .vault.key_rotation import rotate_sessions, sessions_due
from .vault.keystore import load_keypair
from .vault.master import PATH_FORMAT, fingerprint
from .vault.paths import SESSION_TYPES, DerivationPath, repository_url
from .vault.session_vault import SessionVault
from .vault.storage import write_atomic
from .vault.verify import verify_setup
from .version import __version__

logger = logging.getLogger("sealed_sessions")

DECRYPTED_SUFFIX = ".decrypted"


def setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def ask_confirmation(question: str) -> Callable[[], bool]:
    def confirm() -> bool:
        try:
            reply = input(f"{question} (y/N) ")
        except EOFError:
            return False
        return reply.strip().lower() in ("y", "yes")
    return confirm


# =============================================================================
# Commands
# =============================================================================


def cmd_init(vault: SessionVault, args: argparse.Namespace) -> int:
    keypair = vault.setup()
    print(f"Default key:  {vault.config.default_key_path}")
    print(f"Public key:   {keypair.public_hex}")
    print(f"Index:        {vault.config.index_path}")
    secret = vault.master.initialize()
    print(f"Master seed:  {vault.config.master_seed_path}")
    print()
    print("CRITICAL: back up the master seed; all session keys derive from it.")
    print(f"Backup checksum (SHA256): {fingerprint(secret)}")
    return 0


def cmd_derive(vault: SessionVault, args: argparse.Namespace) -> int:
    path = vault.derivation_path(args.session_type, args.index)
    keypair = vault.derive(path)
    print(f"Derivation path: {path}")
    print(f"Key file:        {vault.key_file(path)}")
    print(f"Public key:      {keypair.public_hex}")
    return 0


def cmd_paths(vault: SessionVault, args: argparse.Namespace) -> int:
    print("Derivation path structure:")
    print(f"  {PATH_FORMAT}")
    print()
    print("Examples:")
    for session_type in SESSION_TYPES:
        print(f"  {vault.derivation_path(session_type, 0)}")
    print()
    source = vault.config.scope_identifier or repository_url(vault.config.root)
    print(f"Current scope: {vault.scope()} (derived from: {source or 'no git remote'})")
    return 0


def _recipient(vault: SessionVault, args: argparse.Namespace):
    if args.session_type is None:
        return None, None
    path = vault.derivation_path(args.session_type, args.index or 0)
    return vault.derive(path).public_key, path


def cmd_encrypt(vault: SessionVault, args: argparse.Namespace) -> int:
    source = Path(args.input)
    try:
        content = source.read_bytes()
    except FileNotFoundError as err:
        raise NotFound("Input file not found", path=str(source)) from err
    public_key, path = _recipient(vault, args)
    record = vault.encrypt(
        content,
        recipient_public_key=public_key,
        tags=args.tags or ["auto-encrypted"],
        description=args.description or f"Encrypted session from {source.name}",
        derivation_path=path,
        filename=source.name,
    )
    print(f"Session ID:      {record.session_id}")
    print(f"Encrypted file:  {record.encryption.encrypted_file_path}")
    print(f"Checksum:        {record.checksum}")
    if path is not None:
        print(f"Derivation path: {path}")
    return 0


def _session_id(artifact: str) -> str:
    name = Path(artifact).name
    for suffix in (".sealed", ".metadata.json"):
        if name.endswith(suffix):
            return name[:-len(suffix)]
    return name


def _private_key(vault: SessionVault, session_id: str, key_file: Optional[str]) -> bytes:
    if key_file:
        return load_keypair(key_file).private_key
    record = vault.find(session_id)
    if record.derivation_path:
        keypair: Keypair = vault.derive(DerivationPath.parse(record.derivation_path), save=False)
        return keypair.private_key
    return vault.default_keypair().private_key


def cmd_decrypt(vault: SessionVault, args: argparse.Namespace) -> int:
    session_id = _session_id(args.artifact)
    plaintext = vault.decrypt(session_id, _private_key(vault, session_id, args.key))
    if args.output == "-":
        sys.stdout.buffer.write(plaintext)
        sys.stdout.flush()
        return 0
    output = Path(args.output or f"{session_id}{DECRYPTED_SUFFIX}")
    write_atomic(output.resolve(), plaintext, mode=0o600)
    print(f"Decrypted session {session_id} to {output}")
    print("Warning: the decrypted file contains sensitive data", file=sys.stderr)
    return 0


def cmd_list(vault: SessionVault, args: argparse.Namespace) -> int:
    count = 0
    for count, record in enumerate(vault.list(), start=1):
        print(f"[{count}] {record.session_id}")
        print(f"    Created:     {record.created_at.isoformat()}")
        print(f"    Description: {record.description or 'N/A'}")
        if record.tags:
            print(f"    Tags:        {', '.join(record.tags)}")
        if record.derivation_path:
            print(f"    Key path:    {record.derivation_path}")
    if not count:
        print("No encrypted sessions found")
    else:
        print(f"Found {count} encrypted session(s)")
    return 0


def cmd_backup(vault: SessionVault, args: argparse.Namespace) -> int:
    destination = Path(
        args.output
        or Path.home() / f"sealed-sessions-master-seed-backup-{datetime.now():%Y%m%d}.txt"
    )
    print("This backup allows recovery of all derived session keys.")
    print("Store it in a secure location (password manager, encrypted drive, ...).")
    confirm = (lambda: True) if args.yes else ask_confirmation("Continue?")
    origin = vault.config.scope_identifier or repository_url(vault.config.root)
    written = vault.master.export_for_backup(destination, confirm, origin=origin)
    if written is None:
        print("Backup cancelled")
        return 0
    print(f"Backup created at: {written}")
    print("Copy it to secure storage, then delete it from the local filesystem.")
    return 0


def cmd_restore(vault: SessionVault, args: argparse.Namespace) -> int:
    source = Path(args.backup_file)
    try:
        text = source.read_text(encoding="utf-8")
    except FileNotFoundError as err:
        raise NotFound("Backup file not found", path=str(source)) from err
    secret = vault.master.restore(text)
    print(f"Master seed restored at {vault.config.master_seed_path}")
    print(f"Checksum (SHA256): {fingerprint(secret)}")
    return 0


def cmd_verify(vault: SessionVault, args: argparse.Namespace) -> int:
    checks = verify_setup(vault.config)
    failed = False
    for check in checks:
        mark = "ok" if check.ok else ("FAIL" if check.required else "warn")
        print(f"[{mark:>4}] {check.name}: {check.detail}")
        failed = failed or (check.required and not check.ok)
    if failed:
        print("Some issues detected - see above", file=sys.stderr)
        return 1
    print("All verification checks passed")
    return 0


def cmd_rotate(vault: SessionVault, args: argparse.Namespace) -> int:
    old = load_keypair(args.old_key)
    new = load_keypair(args.new_key)
    only = sessions_due(vault) if args.due_only else None
    stats = rotate_sessions(vault, old.private_key, new.public_key, only=only)
    print(
        "Rotated {rotated} of {total} session(s) "
        "({skipped} skipped, {errors} errors)".format(**stats)
    )
    return 1 if stats["errors"] else 0


# =============================================================================
# Parser
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sealed-sessions",
        description="Hierarchical session key derivation and encrypted session storage",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--root", default=None,
        help="Directory holding .sessions/ (default: $SESSIONS_ROOT or cwd)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create master seed, default key and index")

    derive = subparsers.add_parser("derive", help="Derive a session key")
    derive.add_argument("session_type", help="e.g. " + ", ".join(SESSION_TYPES))
    derive.add_argument("index", type=int, nargs="?", default=0)

    subparsers.add_parser("paths", help="Show derivation path structure")

    encrypt = subparsers.add_parser("encrypt", help="Encrypt a session file")
    encrypt.add_argument("input")
    encrypt.add_argument("--tag", dest="tags", action="append")
    encrypt.add_argument("--description")
    encrypt.add_argument(
        "--session-type", help="Encrypt for the derived key of this session type",
    )
    encrypt.add_argument("--index", type=int, help="Derivation index (requires --session-type)")

    decrypt = subparsers.add_parser("decrypt", help="Decrypt a session")
    decrypt.add_argument("artifact", help="Session id or encrypted file path")
    decrypt.add_argument("-o", "--output", help="Output file, '-' for stdout")
    decrypt.add_argument("--key", help="Key file (default: derived or default key)")

    subparsers.add_parser("list", help="List encrypted sessions")

    backup = subparsers.add_parser("backup", help="Back up the master seed")
    backup.add_argument("-o", "--output")
    backup.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    restore = subparsers.add_parser("restore", help="Restore the master seed from a backup")
    restore.add_argument("backup_file")

    subparsers.add_parser("verify", help="Verify encryption setup")

    rotate = subparsers.add_parser("rotate", help="Re-seal sessions for a new key")
    rotate.add_argument("--old-key", required=True)
    rotate.add_argument("--new-key", required=True)
    rotate.add_argument(
        "--due-only", action="store_true",
        help="Only sessions older than the policy's key_rotation_days",
    )
    return parser


COMMANDS = {
    "init": cmd_init,
    "derive": cmd_derive,
    "paths": cmd_paths,
    "encrypt": cmd_encrypt,
    "decrypt": cmd_decrypt,
    "list": cmd_list,
    "backup": cmd_backup,
    "restore": cmd_restore,
    "verify": cmd_verify,
    "rotate": cmd_rotate,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "encrypt" and args.index is not None and args.session_type is None:
        parser.error("--index requires --session-type")
    setup_logging(args.verbose)
    try:
        config = VaultConfig.from_env(Path(args.root) if args.root else None)
        vault = SessionVault(config)
        return COMMANDS[args.command](vault, args)
    except SessionVaultError as err:
        print(f"error: {err}", file=sys.stderr)
        return 1
    except ValidationError as err:
        print(f"error: invalid configuration: {err}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
