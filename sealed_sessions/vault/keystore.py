"""
Key Store — Recipient keypair files.

One JSON document per key, readable only by the owner (0600)::

    {"created_at": ..., "derivation_path": "session/ab12cd34/dev/0" | null,
     "public_key": "<hex>", "private_key": "<hex>"}
"""
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Union

from ..exceptions import IOFailure, NotInitialized
from .crypto import Keypair
from .paths import DerivationPath
from .storage import read_document, serialize_document, write_atomic, write_exclusive

logger = logging.getLogger("sealed_sessions.vault")

KEY_FILE_MODE = 0o600


def _key_document(keypair: Keypair, derivation_path: Optional[DerivationPath]) -> dict:
    return {
        "created_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "derivation_path": derivation_path.canonical if derivation_path else None,
        "public_key": keypair.public_hex,
        "private_key": keypair.private_key.hex(),
    }


def save_keypair(
    path: Union[str, Path],
    keypair: Keypair,
    derivation_path: Optional[DerivationPath] = None,
    overwrite: bool = True,
) -> Path:
    """Store ``keypair`` at ``path`` with owner-only permissions.

    Derived keys are reproducible, so rewriting them is harmless; random
    keys are saved with ``overwrite=False``.

    Raises:
        FileExistsError: If ``overwrite`` is False and the file exists.
    """
    path = Path(path)
    data = serialize_document(_key_document(keypair, derivation_path))
    if overwrite:
        write_atomic(path, data, mode=KEY_FILE_MODE)
    else:
        try:
            write_exclusive(path, data, mode=KEY_FILE_MODE)
        except FileExistsError:
            raise
        except OSError as err:
            raise IOFailure(f"Cannot write key: {err.strerror}", path=str(path)) from err
    logger.info("Recipient key stored at %s (public key %s)", path, keypair.public_hex)
    return path


def load_keypair(path: Union[str, Path]) -> Keypair:
    """Load a keypair file.

    Raises:
        NotInitialized: If the key file does not exist.
        IOFailure: If the file is malformed.
    """
    path = Path(path)
    try:
        document = read_document(path)
    except FileNotFoundError as err:
        raise NotInitialized("Key file not found; run init or derive first", path=str(path)) from err
    try:
        keypair = Keypair.from_private_bytes(bytes.fromhex(document["private_key"]))
    except (KeyError, TypeError, ValueError) as err:
        raise IOFailure(f"Malformed key file: {err}", path=str(path)) from err
    if keypair.public_hex != document.get("public_key"):
        raise IOFailure("Key file public key does not match its private key", path=str(path))
    return keypair


def key_derivation_path(path: Union[str, Path]) -> Optional[DerivationPath]:
    """Derivation path recorded in a key file, if any."""
    try:
        document = read_document(Path(path))
    except FileNotFoundError as err:
        raise NotInitialized("Key file not found", path=str(path)) from err
    value = document.get("derivation_path")
    return DerivationPath.parse(value) if value else None
