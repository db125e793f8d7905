"""
Vault Configuration — Directory layout and validated settings.

Reads settings from environment variables:
    SESSIONS_ROOT = <directory that holds .sessions/>
    SESSIONS_CIPHER_BACKEND = aesgcm | chacha20
    SESSIONS_SCOPE_IDENTIFIER = <external identifier, e.g. repository URL>
    SESSIONS_PURPOSE = <first derivation path segment>

Security Note:
    Never log key material. Only log paths, ids and fingerprints.
"""
import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("sealed_sessions.vault")

SESSIONS_DIRNAME = ".sessions"
MASTER_SEED_NAME = "master.seed"
DEFAULT_KEY_NAME = "session.key"
INDEX_NAME = "session-index.json"
LOCK_NAME = "index.lock"

CIPHER_BACKENDS = ("aesgcm", "chacha20")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    root: Path = Field(default_factory=Path.cwd)
    cipher_backend: str = Field(default="aesgcm")
    scope_identifier: Optional[str] = None
    purpose: str = Field(default="session", min_length=1)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in CIPHER_BACKENDS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("purpose")
    @classmethod
    def validate_purpose(cls, v: str) -> str:
        if "/" in v:
            raise ValueError(f"purpose cannot contain '/': {v!r}")
        return v

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def sessions_dir(self) -> Path:
        return self.root / SESSIONS_DIRNAME

    @property
    def keys_dir(self) -> Path:
        return self.sessions_dir / "keys"

    @property
    def encrypted_dir(self) -> Path:
        return self.sessions_dir / "encrypted"

    @property
    def master_seed_path(self) -> Path:
        return self.keys_dir / MASTER_SEED_NAME

    @property
    def default_key_path(self) -> Path:
        return self.keys_dir / DEFAULT_KEY_NAME

    @property
    def index_path(self) -> Path:
        return self.sessions_dir / INDEX_NAME

    @property
    def lock_path(self) -> Path:
        return self.sessions_dir / LOCK_NAME

    def ensure_dirs(self) -> None:
        """Create the sessions, keys and encrypted directories."""
        self.encrypted_dir.mkdir(parents=True, exist_ok=True)
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.keys_dir, 0o700)

    @classmethod
    def from_env(cls, root: Optional[Path] = None) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Args:
            root: Overrides SESSIONS_ROOT when given.

        Returns:
            Populated VaultConfig instance.
        """
        if root is None:
            root = Path(os.environ.get("SESSIONS_ROOT", os.getcwd()))
        config = cls(
            root=root,
            cipher_backend=os.environ.get("SESSIONS_CIPHER_BACKEND", "aesgcm"),
            scope_identifier=os.environ.get("SESSIONS_SCOPE_IDENTIFIER") or None,
            purpose=os.environ.get("SESSIONS_PURPOSE", "session"),
        )
        logger.debug(
            "Vault config: root=%s cipher=%s", config.root, config.cipher_backend
        )
        return config
