"""
Session Retrieval — Verify and open stored ciphertext.

The checksum recorded in the index is compared with the stored bytes
before the open primitive is ever called; a mismatch short-circuits.
Plaintext is returned to the caller and never persisted here.
"""
import logging
from pathlib import Path
from typing import Optional

from ..exceptions import ChecksumMismatch, NotFound
from ..models import SessionRecord
from .crypto import SealingPrimitive, checksum, sealer_for_algorithm
from .index import SessionIndex
from .storage import read_bytes

logger = logging.getLogger("sealed_sessions.vault")


class SessionRetriever:
    """Looks up, verifies and decrypts registered sessions."""

    def __init__(self, index: SessionIndex, sealer: Optional[SealingPrimitive] = None):
        self.index = index
        self._sealer = sealer

    def ciphertext_file(self, record: SessionRecord) -> Path:
        return self.index.config.root / record.encryption.encrypted_file_path

    def read_verified(self, record: SessionRecord) -> bytes:
        """Return the stored ciphertext after checking it against the record.

        Raises:
            NotFound: If the ciphertext file is gone.
            ChecksumMismatch: If the bytes differ from the recorded checksum.
        """
        path = self.ciphertext_file(record)
        try:
            ciphertext = read_bytes(path)
        except FileNotFoundError as err:
            raise NotFound(
                f"Ciphertext for session {record.session_id} is missing", path=str(path)
            ) from err
        actual = checksum(ciphertext)
        if actual != record.checksum:
            logger.warning("Checksum mismatch for session %s", record.session_id)
            raise ChecksumMismatch(
                f"Ciphertext of session {record.session_id} was modified",
                expected=record.checksum,
                actual=actual,
                path=str(path),
            )
        return ciphertext

    def decrypt(self, session_id: str, private_key: bytes) -> bytes:
        """Return the plaintext of ``session_id``.

        Raises:
            NotFound: Unknown session or missing ciphertext.
            ChecksumMismatch: Stored ciphertext was corrupted or tampered with.
            DecryptionFailed: Wrong key, bad ciphertext or unsupported algorithm.
        """
        record = self.index.find(session_id)
        ciphertext = self.read_verified(record)
        sealer = self._sealer
        if sealer is None or sealer.algorithm != record.encryption.algorithm:
            sealer = sealer_for_algorithm(record.encryption.algorithm)
        plaintext = sealer.open(ciphertext, private_key)
        logger.info("Decrypted session %s", session_id)
        return plaintext
