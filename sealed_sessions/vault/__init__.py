"""Session Vault — Derived session keys and encrypted session storage.

Security Note (Threat Model):
    The master seed and every private key file live on local disk with
    owner-only permissions. Anyone who can read the seed can derive every
    session key; the index and metadata documents are public by design
    and contain no plaintext or key material.
"""

from .config import VaultConfig
from .crypto import Keypair, SealingPrimitive, X25519Sealer, check_capabilities
from .derivation import DerivedKeyMaterial, derive_key, derive_keypair
from .index import SessionIndex
from .key_rotation import rotate_sessions, sessions_due
from .master import MasterSecret, MasterSecretManager, fingerprint
from .paths import DerivationPath, scope_token
from .session_vault import SessionVault

__all__ = [
    "VaultConfig",
    "Keypair",
    "SealingPrimitive",
    "X25519Sealer",
    "check_capabilities",
    "DerivedKeyMaterial",
    "derive_key",
    "derive_keypair",
    "SessionIndex",
    "rotate_sessions",
    "sessions_due",
    "MasterSecret",
    "MasterSecretManager",
    "fingerprint",
    "DerivationPath",
    "scope_token",
    "SessionVault",
]
