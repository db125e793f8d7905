"""
Session Records — Public metadata for encrypted sessions and the index.

Everything in this module is safe to disclose: records carry ids,
timestamps, tags, checksums and derivation paths, never plaintext or
key material.
"""
import re
from typing import Optional
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field, field_validator

INDEX_VERSION = "1.0.0"

DEFAULT_SENSITIVE_PATTERNS = [
    "API[_-]?KEY",
    "SECRET",
    "PASSWORD",
    "PRIVATE[_-]?KEY",
]
DEFAULT_FILE_TYPES = [".session", ".conversation", ".agent"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyDerivationInfo(BaseModel):
    """How the recipient key of a session was obtained."""

    method: str = Field(default="none")
    path: Optional[str] = None

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        if v not in ("none", "hmac-sha256"):
            raise ValueError(f"Unsupported key derivation method: {v}")
        return v


class EncryptionInfo(BaseModel):
    algorithm: str
    key_derivation: KeyDerivationInfo = Field(default_factory=KeyDerivationInfo)
    encrypted_file_path: str
    checksum: str


class SessionRecord(BaseModel):
    """Metadata record of one encrypted session.

    Only ``updated_at``, ``tags`` and ``description`` may change after the
    record is written.
    """

    session_id: str
    created_at: datetime
    updated_at: datetime
    tags: list[str] = Field(default_factory=list)
    description: str = ""
    encryption: EncryptionInfo

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, v: list[str]) -> list[str]:
        """Tags behave as a set; keep first-seen order."""
        return list(dict.fromkeys(v))

    @property
    def checksum(self) -> str:
        return self.encryption.checksum

    @property
    def derivation_path(self) -> Optional[str]:
        return self.encryption.key_derivation.path

    def to_document(self) -> dict:
        """Return the per-session metadata document."""
        return {"metadata": self.model_dump(mode="json")}

    @classmethod
    def from_document(cls, document: dict) -> "SessionRecord":
        return cls.model_validate(document["metadata"])


class KeyManagement(BaseModel):
    storage_location: str = "git_ignored_file"
    key_rotation_days: int = Field(default=0, ge=0)
    bip32_enabled: bool = False
    master_key_backup: bool = True


class ContentFilters(BaseModel):
    """Patterns that flag plaintext which should never be committed in clear."""

    patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SENSITIVE_PATTERNS)
    )
    file_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FILE_TYPES)
    )

    @field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as err:
                raise ValueError(f"Invalid content filter {pattern!r}: {err}") from err
        return v

    def scan(self, content: bytes, filename: Optional[str] = None) -> list[str]:
        """Return the filters matched by ``content`` (and ``filename``).

        Args:
            content: Plaintext about to be encrypted.
            filename: Optional source file name, checked against file_types.

        Returns:
            List of matched patterns and file types, empty if clean.
        """
        text = content.decode("utf-8", errors="replace")
        hits = [
            pattern for pattern in self.patterns
            if re.search(pattern, text, re.IGNORECASE)
        ]
        if filename:
            hits.extend(
                suffix for suffix in self.file_types
                if filename.endswith(suffix)
            )
        return hits


class SessionPolicy(BaseModel):
    policy_name: str = "default"
    auto_encrypt: bool = False
    require_encryption: bool = False
    key_management: KeyManagement = Field(default_factory=KeyManagement)
    content_filters: ContentFilters = Field(default_factory=ContentFilters)

    @property
    def key_rotation_days(self) -> int:
        return self.key_management.key_rotation_days

    def rotation_due(self, record: SessionRecord, now: Optional[datetime] = None) -> bool:
        """True when ``record`` is older than the rotation period (0 disables)."""
        days = self.key_rotation_days
        if not days:
            return False
        now = now or utcnow()
        return now - record.created_at >= timedelta(days=days)


class IndexStatistics(BaseModel):
    total_sessions: int = 0
    encrypted_sessions: int = 0
    last_updated: datetime = Field(default_factory=utcnow)


class IndexDocument(BaseModel):
    """On-disk shape of the session index."""

    index_version: str = INDEX_VERSION
    sessions: list[SessionRecord] = Field(default_factory=list)
    policy: SessionPolicy = Field(default_factory=SessionPolicy)
    statistics: IndexStatistics = Field(default_factory=IndexStatistics)

    def refresh_statistics(self) -> None:
        total = len(self.sessions)
        self.statistics = IndexStatistics(
            total_sessions=total,
            encrypted_sessions=total,
            last_updated=utcnow(),
        )
