"""Error taxonomy for the session vault.

Every failure surfaces to the caller with its specific kind; nothing here
is retried or silently recovered.
"""
from typing import Optional


class SessionVaultError(Exception):
    """Base class for all session vault failures."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} [{self.path}]"
        return self.message


class AlreadyInitialized(SessionVaultError):
    """A master seed already exists at the configured location."""


class NotInitialized(SessionVaultError):
    """The master seed (or a required key) has not been created yet."""


class WeakSecret(SessionVaultError):
    """Master secret is empty, all-zero or malformed."""


class InvalidSegment(SessionVaultError):
    """A derivation path segment is empty or contains the separator."""


class DuplicateId(SessionVaultError):
    """A session id is already registered in the index."""


class NotFound(SessionVaultError):
    """No session with the requested id."""


class ChecksumMismatch(SessionVaultError):
    """Stored ciphertext does not match the checksum recorded for it."""

    def __init__(self, message: str, expected: str, actual: str, path: Optional[str] = None):
        super().__init__(
            f"{message} (expected {expected}, got {actual})", path=path
        )
        self.expected = expected
        self.actual = actual


class InvalidKey(SessionVaultError):
    """Recipient public key or key material is malformed."""


class DecryptionFailed(SessionVaultError):
    """Wrong key, corrupted ciphertext or unsupported algorithm."""


class IOFailure(SessionVaultError):
    """Underlying storage is unavailable or unreadable."""


class MissingCapability(SessionVaultError):
    """The sealing or hashing capability is not available."""
