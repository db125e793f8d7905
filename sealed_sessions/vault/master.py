"""
Master Secret — Create-once root seed, fingerprinting and backup.

The seed file holds 32 bytes of entropy as 64 hex characters plus a
newline. It is created with O_EXCL so concurrent ``init`` calls cannot
both succeed, and is never regenerated without explicit confirmation:
a new seed orphans every key derived from the old one.

Security Note:
    Never log the seed. Only log its fingerprint and location.
"""
import os
import re
import logging
import secrets
from pathlib import Path
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from ..exceptions import (
    AlreadyInitialized,
    ChecksumMismatch,
    IOFailure,
    NotInitialized,
    WeakSecret,
)
from .crypto import hash_hex
from .storage import read_bytes, write_exclusive

logger = logging.getLogger("sealed_sessions.vault")

SEED_BYTES = 32
SEED_HEX_LENGTH = SEED_BYTES * 2

BACKUP_TITLE = "Sealed Sessions - Master Seed Backup"
PATH_FORMAT = "{purpose}/{scope}/{session_type}/{index}"

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_BACKUP_CHECKSUM_RE = re.compile(r"^Checksum: ([0-9a-f]{64})$", re.MULTILINE)
_BACKUP_SEED_RE = re.compile(r"^MASTER SEED \(hex\):\n-+\n([0-9a-fA-F]+)$", re.MULTILINE)


class MasterSecret:
    """Root entropy handle passed explicitly into every derivation."""

    __slots__ = ("entropy",)

    def __init__(self, entropy: bytes):
        self.entropy = entropy

    @classmethod
    def from_hex(cls, value: str) -> "MasterSecret":
        """Parse a hex-encoded seed.

        Raises:
            WeakSecret: If the value is not 64 hex chars or is all-zero.
        """
        value = value.strip().lower()
        if len(value) != SEED_HEX_LENGTH or not _HEX_RE.match(value):
            raise WeakSecret(
                f"Master seed must be {SEED_HEX_LENGTH} hex characters, "
                f"got {len(value)}"
            )
        entropy = bytes.fromhex(value)
        if not any(entropy):
            raise WeakSecret("Master seed is all-zero")
        return cls(entropy)

    def serialize(self) -> bytes:
        """Seed file content."""
        return self.entropy.hex().encode("ascii") + b"\n"

    def __repr__(self) -> str:
        return f"<MasterSecret fingerprint={fingerprint(self)[:16]}…>"


def fingerprint(secret: MasterSecret) -> str:
    """SHA-256 of the seed file content, for out-of-band backup checks.

    Matches ``sha256sum master.seed``. Never used as key material.
    """
    return hash_hex(secret.serialize())


def backup_document(
    secret: MasterSecret,
    origin: Optional[str] = None,
    generated: Optional[datetime] = None,
) -> str:
    """Human-readable backup of ``secret`` with checksum and provenance."""
    generated = generated or datetime.now(timezone.utc)
    return f"""{BACKUP_TITLE}
{'=' * len(BACKUP_TITLE)}

Generated: {generated.strftime('%Y-%m-%dT%H:%M:%SZ')}
Origin: {origin or 'N/A'}
Checksum: {fingerprint(secret)}

MASTER SEED (hex):
------------------
{secret.entropy.hex()}

IMPORTANT:
- Keep this file secure and encrypted
- Anyone with this seed can derive all session keys
- Delete this file after backing up to secure storage
- Verify checksum when restoring

Derivation path format: {PATH_FORMAT}
"""


def parse_backup(text: str) -> MasterSecret:
    """Recover the seed from a backup document, verifying its checksum.

    Raises:
        WeakSecret: If the document holds no valid seed.
        ChecksumMismatch: If the seed does not match the recorded checksum.
    """
    seed = _BACKUP_SEED_RE.search(text)
    if not seed:
        raise WeakSecret("Backup document contains no master seed")
    secret = MasterSecret.from_hex(seed.group(1))
    recorded = _BACKUP_CHECKSUM_RE.search(text)
    if not recorded:
        raise WeakSecret("Backup document contains no checksum")
    actual = fingerprint(secret)
    if recorded.group(1) != actual:
        raise ChecksumMismatch(
            "Backup checksum does not match seed",
            expected=recorded.group(1),
            actual=actual,
        )
    return secret


class MasterSecretManager:
    """Lifecycle of the single master seed stored at ``seed_path``."""

    def __init__(self, seed_path: Union[str, Path]):
        self.seed_path = Path(seed_path)

    def exists(self) -> bool:
        return self.seed_path.exists()

    def _create(self, secret: MasterSecret) -> None:
        try:
            self.seed_path.parent.mkdir(parents=True, exist_ok=True)
            write_exclusive(self.seed_path, secret.serialize(), mode=0o600)
        except FileExistsError as err:
            raise AlreadyInitialized(
                "Master seed already exists; delete it manually to regenerate "
                "(this invalidates all derived keys)",
                path=str(self.seed_path),
            ) from err
        except OSError as err:
            raise IOFailure(
                f"Cannot create master seed: {err.strerror}", path=str(self.seed_path)
            ) from err

    def initialize(self) -> MasterSecret:
        """Generate and store a fresh seed.

        Raises:
            AlreadyInitialized: If a seed already exists; it is left untouched.
        """
        secret = MasterSecret(secrets.token_bytes(SEED_BYTES))
        self._create(secret)
        logger.info(
            "Master seed created at %s (fingerprint %s)",
            self.seed_path, fingerprint(secret),
        )
        return secret

    def load(self) -> MasterSecret:
        """Read the stored seed.

        Raises:
            NotInitialized: If no seed exists yet.
            WeakSecret: If the stored seed is malformed or all-zero.
        """
        try:
            data = read_bytes(self.seed_path)
        except FileNotFoundError as err:
            raise NotInitialized(
                "Master seed not found; run init first", path=str(self.seed_path)
            ) from err
        try:
            return MasterSecret.from_hex(data.decode("ascii"))
        except UnicodeDecodeError as err:
            raise WeakSecret(
                "Master seed is not hex-encoded", path=str(self.seed_path)
            ) from err

    def fingerprint(self) -> str:
        return fingerprint(self.load())

    def export_for_backup(
        self,
        destination: Union[str, Path],
        confirm: Callable[[], bool],
        origin: Optional[str] = None,
    ) -> Optional[Path]:
        """Write a backup document after the caller acknowledges it.

        Args:
            destination: File to create (must not exist).
            confirm: Called once; nothing is written unless it returns True.
            origin: Provenance recorded in the backup (e.g. repository URL).

        Returns:
            The backup path, or None if the caller declined.
        """
        secret = self.load()
        if not confirm():
            logger.info("Master seed backup cancelled")
            return None
        destination = Path(destination)
        try:
            write_exclusive(
                destination,
                backup_document(secret, origin).encode("utf-8"),
                mode=0o600,
            )
        except FileExistsError as err:
            raise IOFailure("Backup file already exists", path=str(destination)) from err
        except OSError as err:
            raise IOFailure(
                f"Cannot write backup: {err.strerror}", path=str(destination)
            ) from err
        logger.info("Master seed backup written to %s", destination)
        return destination

    def restore(self, backup_text: str) -> MasterSecret:
        """Recreate the seed from a backup document.

        Raises:
            ChecksumMismatch: If the backup is corrupted.
            AlreadyInitialized: If a seed already exists.
        """
        secret = parse_backup(backup_text)
        self._create(secret)
        logger.info(
            "Master seed restored at %s (fingerprint %s)",
            self.seed_path, fingerprint(secret),
        )
        return secret

    def regenerate(self, confirm: Callable[[], bool]) -> Optional[MasterSecret]:
        """Destroy and recreate the seed. Every derived key becomes unrecoverable.

        Returns:
            The new secret, or None if the caller declined.
        """
        if not self.exists():
            raise NotInitialized("No master seed to regenerate", path=str(self.seed_path))
        if not confirm():
            logger.info("Master seed regeneration cancelled")
            return None
        try:
            os.unlink(self.seed_path)
        except OSError as err:
            raise IOFailure(
                f"Cannot remove master seed: {err.strerror}", path=str(self.seed_path)
            ) from err
        logger.warning("Master seed at %s destroyed for regeneration", self.seed_path)
        return self.initialize()
