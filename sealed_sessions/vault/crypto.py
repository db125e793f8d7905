"""
Vault Crypto Core — Hashing, recipient keypairs and asymmetric sealing.

Sealing is X25519 envelope encryption:
    ephemeral X25519 ⨉ recipient public → HKDF-SHA256 → AEAD → ciphertext

Sealed format: [magic 4B][ephemeral public key 32B][nonce 12B][payload + tag 16B]

The header (magic + ephemeral key) is authenticated as associated data.

Security Note:
    Never log plaintext, private keys or seeds.
    Nonces are random 96-bit; each message also uses a fresh ephemeral key.
"""
import os
import logging
from dataclasses import dataclass, field
from typing import Protocol

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import DecryptionFailed, InvalidKey, MissingCapability

logger = logging.getLogger("sealed_sessions.vault")

MAGIC = b"SSv1"
PUBLIC_KEY_SIZE = 32
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32
SEED_SIZE = 32

ALGORITHM_PREFIX = "x25519-hkdf-sha256-"

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def hash_hex(data: bytes) -> str:
    """SHA-256 hex digest of ``data``."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize().hex()


def checksum(ciphertext: bytes) -> str:
    """Checksum recorded for a stored ciphertext."""
    return hash_hex(ciphertext)


# ---------------------------------------------------------------------------
# Keypairs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Keypair:
    """Raw X25519 recipient keypair."""

    public_key: bytes
    private_key: bytes = field(repr=False)

    @classmethod
    def from_private_bytes(cls, private_key: bytes) -> "Keypair":
        sk = X25519PrivateKey.from_private_bytes(private_key)
        return cls(
            public_key=sk.public_key().public_bytes_raw(),
            private_key=sk.private_bytes_raw(),
        )

    @property
    def public_hex(self) -> str:
        return self.public_key.hex()


class SealingPrimitive(Protocol):
    """Asymmetric sealing capability consumed by the vault."""

    algorithm: str

    def seal(self, plaintext: bytes, recipient_public_key: bytes) -> bytes:
        ...

    def open(self, ciphertext: bytes, private_key: bytes) -> bytes:
        ...

    def keypair_from_seed(self, seed: bytes) -> Keypair:
        ...

    def generate_keypair(self) -> Keypair:
        ...


# ---------------------------------------------------------------------------
# X25519 sealing
# ---------------------------------------------------------------------------

class X25519Sealer:
    """Anonymous-sender envelope encryption to an X25519 recipient."""

    def __init__(self, cipher_backend: str = "aesgcm"):
        if cipher_backend not in _CIPHERS:
            raise MissingCapability(f"Unsupported cipher backend: {cipher_backend}")
        self.cipher_backend = cipher_backend
        self._cipher_cls = _CIPHERS[cipher_backend]
        self.algorithm = f"{ALGORITHM_PREFIX}{cipher_backend}"

    def _derive(self, shared: bytes, ephemeral_pub: bytes, recipient_pub: bytes) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=ephemeral_pub + recipient_pub,
            info=self.algorithm.encode("ascii"),
        )
        return hkdf.derive(shared)

    def keypair_from_seed(self, seed: bytes) -> Keypair:
        """Deterministic keypair whose private scalar is ``seed``."""
        if len(seed) != SEED_SIZE:
            raise ValueError(f"Seed must be {SEED_SIZE} bytes, got {len(seed)}")
        return Keypair.from_private_bytes(seed)

    def generate_keypair(self) -> Keypair:
        return Keypair.from_private_bytes(os.urandom(SEED_SIZE))

    def seal(self, plaintext: bytes, recipient_public_key: bytes) -> bytes:
        """Encrypt ``plaintext`` so that only the recipient can open it.

        Args:
            plaintext: Data to encrypt.
            recipient_public_key: Raw 32-byte X25519 public key.

        Returns:
            Sealed ciphertext bytes.

        Raises:
            InvalidKey: If the recipient key is not a raw X25519 public key.
        """
        try:
            recipient = X25519PublicKey.from_public_bytes(recipient_public_key)
        except (TypeError, ValueError) as err:
            raise InvalidKey(f"Invalid recipient public key: {err}") from err
        ephemeral = X25519PrivateKey.generate()
        ephemeral_pub = ephemeral.public_key().public_bytes_raw()
        key = self._derive(
            ephemeral.exchange(recipient), ephemeral_pub, recipient_public_key
        )
        header = MAGIC + ephemeral_pub
        nonce = os.urandom(NONCE_SIZE)
        ct = self._cipher_cls(key).encrypt(nonce, plaintext, header)
        return header + nonce + ct

    def open(self, ciphertext: bytes, private_key: bytes) -> bytes:
        """Decrypt sealed ciphertext with the recipient private key.

        Raises:
            DecryptionFailed: Wrong key, truncated or corrupted ciphertext.
        """
        _min = len(MAGIC) + PUBLIC_KEY_SIZE + NONCE_SIZE + TAG_SIZE
        if len(ciphertext) < _min:
            raise DecryptionFailed(
                f"Ciphertext too short: {len(ciphertext)} bytes (minimum {_min})"
            )
        if not ciphertext.startswith(MAGIC):
            raise DecryptionFailed("Ciphertext is not a sealed session payload")
        offset = len(MAGIC)
        ephemeral_pub = ciphertext[offset:offset + PUBLIC_KEY_SIZE]
        offset += PUBLIC_KEY_SIZE
        nonce = ciphertext[offset:offset + NONCE_SIZE]
        ct = ciphertext[offset + NONCE_SIZE:]
        try:
            sk = X25519PrivateKey.from_private_bytes(private_key)
            recipient_pub = sk.public_key().public_bytes_raw()
            shared = sk.exchange(X25519PublicKey.from_public_bytes(ephemeral_pub))
        except ValueError as err:
            raise DecryptionFailed(f"Invalid key material: {err}") from err
        key = self._derive(shared, ephemeral_pub, recipient_pub)
        try:
            return self._cipher_cls(key).decrypt(nonce, ct, MAGIC + ephemeral_pub)
        except InvalidTag as err:
            raise DecryptionFailed(
                "Authentication failed: wrong private key or corrupted ciphertext"
            ) from err


def sealer_for_algorithm(algorithm: str) -> X25519Sealer:
    """Return the sealer able to open sessions recorded with ``algorithm``.

    Raises:
        DecryptionFailed: If the algorithm is not supported.
    """
    if algorithm.startswith(ALGORITHM_PREFIX):
        backend = algorithm[len(ALGORITHM_PREFIX):]
        if backend in _CIPHERS:
            return X25519Sealer(backend)
    raise DecryptionFailed(f"Unsupported encryption algorithm: {algorithm}")


def check_capabilities(cipher_backend: str = "aesgcm") -> None:
    """Probe the sealing and hashing primitives before any stateful action.

    Raises:
        MissingCapability: If X25519, the AEAD cipher or SHA-256 is unavailable.
    """
    try:
        sealer = X25519Sealer(cipher_backend)
        keypair = sealer.generate_keypair()
        probe = b"capability-probe"
        if sealer.open(sealer.seal(probe, keypair.public_key), keypair.private_key) != probe:
            raise MissingCapability("Sealing primitive failed self-test")
        hash_hex(probe)
    except UnsupportedAlgorithm as err:
        raise MissingCapability(f"Cryptographic backend lacks support: {err}") from err
    logger.debug("Sealing capability available: %s", sealer.algorithm)
