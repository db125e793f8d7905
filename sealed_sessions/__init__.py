"""Sealed Sessions.

Hierarchical key derivation from a master seed plus an encrypted,
checksummed session store with a public index.
"""
from .version import __version__
from .exceptions import (
    SessionVaultError,
    AlreadyInitialized,
    NotInitialized,
    WeakSecret,
    InvalidSegment,
    DuplicateId,
    NotFound,
    ChecksumMismatch,
    InvalidKey,
    DecryptionFailed,
    IOFailure,
    MissingCapability,
)

__all__ = [
    "__version__",
    "SessionVaultError",
    "AlreadyInitialized",
    "NotInitialized",
    "WeakSecret",
    "InvalidSegment",
    "DuplicateId",
    "NotFound",
    "ChecksumMismatch",
    "InvalidKey",
    "DecryptionFailed",
    "IOFailure",
    "MissingCapability",
]
