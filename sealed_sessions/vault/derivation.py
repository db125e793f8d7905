"""
Key Derivation — (master secret, derivation path) → key material.

derived = HMAC-SHA256(key=master seed entropy, msg=canonical path)

A single keyed hash over the flat path string gives domain separation
between paths; it is not a BIP-32 child-key tree. The output doubles as
the private scalar of the recipient X25519 keypair for that path.
"""
import logging
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import hashes, hmac

from ..exceptions import WeakSecret
from .crypto import Keypair, SealingPrimitive
from .master import MasterSecret
from .paths import DerivationPath

logger = logging.getLogger("sealed_sessions.vault")


@dataclass(frozen=True)
class DerivedKeyMaterial:
    """Entropy derived for one path. Never persisted as-is."""

    path: DerivationPath
    entropy: bytes = field(repr=False)

    def hex(self) -> str:
        return self.entropy.hex()


def derive_key(master_secret: MasterSecret, path: DerivationPath) -> DerivedKeyMaterial:
    """Derive 32 bytes of key material for ``path``.

    Pure function: identical inputs always give bit-identical output.

    Raises:
        WeakSecret: If the master secret is empty or all-zero.
    """
    entropy = master_secret.entropy
    if not entropy or not any(entropy):
        raise WeakSecret("Master secret is empty or all-zero")
    mac = hmac.HMAC(entropy, hashes.SHA256())
    mac.update(path.canonical.encode("utf-8"))
    return DerivedKeyMaterial(path=path, entropy=mac.finalize())


def derive_keypair(
    master_secret: MasterSecret,
    path: DerivationPath,
    sealer: SealingPrimitive,
) -> Keypair:
    """Recipient keypair for ``path``, seeded by the derived entropy."""
    material = derive_key(master_secret, path)
    logger.debug("Derived key material for path %s", path)
    return sealer.keypair_from_seed(material.entropy)
