"""
Session Key Rotation — Re-seal sessions from one recipient key to another.

Every session readable with the old private key is decrypted, sealed for
the new recipient, registered under a new id, and only then is the old
session removed. A failure on one session is logged and counted in the
stats; the run continues with the next one. A failed removal leaves both
the old and the re-sealed copy registered. Running again is safe:
sessions already sealed for the new key fail to open with the old key and
are skipped.

Security Note:
    Plaintext exists in memory only while each session is re-sealed.
    Never log plaintext or key material.
"""
import logging
from datetime import datetime
from typing import Optional

from ..exceptions import DecryptionFailed, SessionVaultError
from .session_vault import SessionVault

logger = logging.getLogger("sealed_sessions.vault")


def sessions_due(vault: SessionVault, now: Optional[datetime] = None) -> list[str]:
    """Ids of sessions older than the policy's ``key_rotation_days``."""
    policy = vault.index.policy
    return [
        record.session_id for record in vault.list()
        if policy.rotation_due(record, now)
    ]


def rotate_sessions(
    vault: SessionVault,
    old_private_key: bytes,
    new_public_key: bytes,
    only: Optional[list[str]] = None,
) -> dict:
    """Re-seal sessions for ``new_public_key``.

    Args:
        vault: Vault holding the sessions.
        old_private_key: Key currently able to open the sessions.
        new_public_key: Recipient for the re-sealed sessions.
        only: Restrict rotation to these session ids.

    Returns:
        Stats dict with keys: total, rotated, errors, skipped.
    """
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
    records = [
        record for record in vault.list()
        if only is None or record.session_id in only
    ]
    logger.info("Starting key rotation of %d session(s)", len(records))

    for record in records:
        stats["total"] += 1
        session_id = record.session_id
        try:
            plaintext = vault.decrypt(session_id, old_private_key)
        except DecryptionFailed:
            logger.debug("Session %s not readable with old key, skipping", session_id)
            stats["skipped"] += 1
            continue
        except SessionVaultError as err:
            logger.error("Error rotating session %s: %s", session_id, err)
            stats["errors"] += 1
            continue

        try:
            new_record = vault.encrypt(
                plaintext,
                recipient_public_key=new_public_key,
                tags=record.tags,
                description=record.description,
            )
        except SessionVaultError as err:
            logger.error("Error re-sealing session %s: %s", session_id, err)
            stats["errors"] += 1
            continue
        try:
            vault.remove(session_id)
        except SessionVaultError as err:
            logger.error(
                "Re-sealed session %s as %s but could not remove it: %s",
                session_id, new_record.session_id, err,
            )
            stats["errors"] += 1
            continue
        logger.info("Rotated session %s -> %s", session_id, new_record.session_id)
        stats["rotated"] += 1

    logger.info("Key rotation complete: %s", stats)
    return stats
