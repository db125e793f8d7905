"""
Derivation Paths — Typed, canonical key derivation paths.

A path has four segments::

    purpose / scope_token / session_type / index

e.g. ``session/ab12cd34/planning/0``. The canonical string is the only
input to key derivation; segments are validated at construction so a
malformed path never reaches the derivation step.
"""
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..exceptions import InvalidSegment
from .crypto import hash_hex

logger = logging.getLogger("sealed_sessions.vault")

SEPARATOR = "/"
SCOPE_TOKEN_LENGTH = 8
NO_SCOPE = "0"

SESSION_TYPES = ("planning", "dev", "review", "research", "discussion")


def scope_token(identifier: str) -> str:
    """Shorten an external identifier (e.g. a repository URL) to a hex token.

    Raises:
        InvalidSegment: If the identifier is empty.
    """
    if not identifier:
        raise InvalidSegment("Scope identifier cannot be empty")
    return hash_hex(identifier.encode("utf-8"))[:SCOPE_TOKEN_LENGTH]


def repository_scope(repo_root: Union[str, Path]) -> str:
    """Scope token of the git ``origin`` remote, or ``"0"`` without one."""
    url = repository_url(repo_root)
    return scope_token(url) if url else NO_SCOPE


def repository_url(repo_root: Union[str, Path]) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", "-C", str(repo_root), "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        logger.debug("git not available, using empty scope")
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def _check_segment(name: str, value: str) -> None:
    if not value:
        raise InvalidSegment(f"Derivation path segment '{name}' cannot be empty")
    if SEPARATOR in value:
        raise InvalidSegment(
            f"Derivation path segment '{name}' cannot contain '{SEPARATOR}': {value!r}"
        )
    if value != value.strip():
        raise InvalidSegment(
            f"Derivation path segment '{name}' has surrounding whitespace: {value!r}"
        )


@dataclass(frozen=True)
class DerivationPath:
    """Semantic path identifying a derived key."""

    purpose: str
    scope: str
    session_type: str
    index: int

    def __post_init__(self):
        _check_segment("purpose", self.purpose)
        _check_segment("scope", self.scope)
        _check_segment("session_type", self.session_type)
        if isinstance(self.index, bool) or not isinstance(self.index, int):
            raise InvalidSegment(f"Derivation index must be an integer: {self.index!r}")
        if self.index < 0:
            raise InvalidSegment(f"Derivation index cannot be negative: {self.index}")

    @classmethod
    def build(
        cls,
        purpose: str,
        scope_identifier: str,
        session_type: str,
        index: int,
    ) -> "DerivationPath":
        """Build a path, hashing ``scope_identifier`` into its scope token."""
        return cls(purpose, scope_token(scope_identifier), session_type, index)

    @classmethod
    def parse(cls, value: str) -> "DerivationPath":
        """Parse a canonical path string.

        Raises:
            InvalidSegment: If the string does not have four valid segments.
        """
        parts = value.split(SEPARATOR)
        if len(parts) != 4:
            raise InvalidSegment(
                f"Derivation path must have 4 segments, got {len(parts)}: {value!r}"
            )
        purpose, scope, session_type, index = parts
        if not (index.isascii() and index.isdigit()):
            raise InvalidSegment(f"Derivation index must be a non-negative integer: {index!r}")
        if len(index) > 1 and index.startswith("0"):
            raise InvalidSegment(f"Derivation index has leading zeros: {index!r}")
        return cls(purpose, scope, session_type, int(index))

    @property
    def canonical(self) -> str:
        return SEPARATOR.join(
            (self.purpose, self.scope, self.session_type, str(self.index))
        )

    @property
    def key_name(self) -> str:
        """File name of the recipient key stored for this path."""
        digest = hash_hex(self.canonical.encode("utf-8"))[:12]
        return f"{self.session_type}-{self.index}-{digest}.key"

    def __str__(self) -> str:
        return self.canonical
