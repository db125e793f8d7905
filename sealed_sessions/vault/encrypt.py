"""
Session Encryption — Seal a content blob and write its two artifacts.

``encrypt`` writes ``<session_id>.sealed`` (ciphertext, fsynced) and then
``<session_id>.metadata.json``, and returns the record. It never touches
the index: registering the record is the caller's step, so a crash
between the two leaves only an inert orphaned ciphertext.
"""
import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from ..exceptions import DuplicateId, IOFailure
from ..models import EncryptionInfo, KeyDerivationInfo, SessionRecord
from .config import VaultConfig
from .crypto import SealingPrimitive, X25519Sealer, checksum
from .paths import DerivationPath
from .storage import write_document, write_exclusive

logger = logging.getLogger("sealed_sessions.vault")

CIPHERTEXT_SUFFIX = ".sealed"
METADATA_SUFFIX = ".metadata.json"


def new_session_id(now: Optional[datetime] = None) -> str:
    """Sortable-by-creation id: ``YYYYMMDD-HHMMSS-ffffff-<8 hex>``."""
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d-%H%M%S-%f}-{secrets.token_hex(4)}"


def ciphertext_path(config: VaultConfig, session_id: str) -> Path:
    return config.encrypted_dir / f"{session_id}{CIPHERTEXT_SUFFIX}"


def metadata_path(config: VaultConfig, session_id: str) -> Path:
    return config.encrypted_dir / f"{session_id}{METADATA_SUFFIX}"


class SessionEncryptor:
    """Produces ciphertext artifacts and their metadata records."""

    def __init__(self, config: VaultConfig, sealer: Optional[SealingPrimitive] = None):
        self.config = config
        self.sealer = sealer or X25519Sealer(config.cipher_backend)

    def encrypt(
        self,
        content: bytes,
        recipient_public_key: bytes,
        tags: Optional[Iterable[str]] = None,
        description: str = "",
        derivation_path: Optional[DerivationPath] = None,
    ) -> SessionRecord:
        """Seal ``content`` for the recipient and persist both artifacts.

        Args:
            content: Plaintext bytes; never written to disk.
            recipient_public_key: Static or derived recipient public key.
            tags: Free-form labels.
            description: Public description, must not contain secrets.
            derivation_path: Path the recipient key was derived from, if any.

        Returns:
            The metadata record, not yet registered in the index.
        """
        now = datetime.now(timezone.utc)
        session_id = new_session_id(now)
        sealed = self.sealer.seal(content, recipient_public_key)
        digest = checksum(sealed)

        ct_path = ciphertext_path(self.config, session_id)
        try:
            ct_path.parent.mkdir(parents=True, exist_ok=True)
            write_exclusive(ct_path, sealed, mode=0o644)
        except FileExistsError as err:
            raise DuplicateId(
                f"Ciphertext for session {session_id} already exists", path=str(ct_path)
            ) from err
        except OSError as err:
            raise IOFailure(
                f"Cannot write ciphertext: {err.strerror}", path=str(ct_path)
            ) from err

        if derivation_path is not None:
            key_derivation = KeyDerivationInfo(
                method="hmac-sha256", path=derivation_path.canonical
            )
        else:
            key_derivation = KeyDerivationInfo(method="none", path=None)
        record = SessionRecord(
            session_id=session_id,
            created_at=now,
            updated_at=now,
            tags=list(tags or []),
            description=description,
            encryption=EncryptionInfo(
                algorithm=self.sealer.algorithm,
                key_derivation=key_derivation,
                encrypted_file_path=ct_path.relative_to(self.config.root).as_posix(),
                checksum=digest,
            ),
        )
        write_document(metadata_path(self.config, session_id), record.to_document())
        logger.info(
            "Encrypted session %s (%d bytes sealed, checksum %s)",
            session_id, len(sealed), digest,
        )
        return record
