"""
SessionVault — Encrypted session storage bound to a master seed.

Provides the public API for the session vault:
- ``setup()`` — create directories, the default recipient key and the index
- ``derive(path)`` — derive and store the recipient key for a derivation path
- ``encrypt(content, ...)`` — seal content and register it in the index
- ``decrypt(session_id, private_key)`` — verify checksum and open a session
- ``list()`` / ``find()`` — enumerate and look up records without decrypting
- ``update()`` / ``remove()`` — edit public metadata, delete a session

Security Note:
    Never log plaintext or key material. Only log session ids, paths,
    checksums and public keys.
"""
import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from ..exceptions import IOFailure
from ..models import SessionPolicy, SessionRecord
from .config import VaultConfig
from .crypto import Keypair, SealingPrimitive, X25519Sealer, check_capabilities
from .derivation import derive_keypair
from .encrypt import SessionEncryptor, metadata_path
from .index import SessionIndex, SessionListing
from .keystore import load_keypair, save_keypair
from .master import MasterSecretManager
from .paths import DerivationPath, repository_scope, scope_token
from .retrieval import SessionRetriever
from .storage import write_document

logger = logging.getLogger("sealed_sessions.vault")


class SessionVault:
    """Facade over master seed, key derivation, encryption and the index.

    The sealing primitive is injected so tests can substitute it; by
    default the X25519 sealer for ``config.cipher_backend`` is used.
    """

    def __init__(self, config: VaultConfig, sealer: Optional[SealingPrimitive] = None):
        self.config = config
        self.sealer = sealer or X25519Sealer(config.cipher_backend)
        self.master = MasterSecretManager(config.master_seed_path)
        self.index = SessionIndex(config)
        self.encryptor = SessionEncryptor(config, self.sealer)
        self.retriever = SessionRetriever(self.index, self.sealer)
        self._capabilities_checked = False

    def _require_capabilities(self) -> None:
        """Fail with MissingCapability before any stateful action."""
        if self._capabilities_checked:
            return
        if isinstance(self.sealer, X25519Sealer):
            check_capabilities(self.sealer.cipher_backend)
        self._capabilities_checked = True

    # ------------------------------------------------------------------
    # Setup and keys
    # ------------------------------------------------------------------

    def setup(self, policy: Optional[SessionPolicy] = None) -> Keypair:
        """Create directories, the default recipient key and an empty index.

        Idempotent: an existing default key or index is kept.

        Returns:
            The default recipient keypair.
        """
        self._require_capabilities()
        try:
            self.config.ensure_dirs()
        except OSError as err:
            raise IOFailure(
                f"Cannot create session directories: {err.strerror}",
                path=str(self.config.sessions_dir),
            ) from err
        key_path = self.config.default_key_path
        if key_path.exists():
            logger.info("Keeping existing default key at %s", key_path)
            keypair = load_keypair(key_path)
        else:
            keypair = self.sealer.generate_keypair()
            save_keypair(key_path, keypair, overwrite=False)
        self.index.create(policy)
        return keypair

    def scope(self) -> str:
        """Scope token from the configured identifier or the git remote."""
        if self.config.scope_identifier:
            return scope_token(self.config.scope_identifier)
        return repository_scope(self.config.root)

    def derivation_path(self, session_type: str, index: int = 0) -> DerivationPath:
        return DerivationPath(self.config.purpose, self.scope(), session_type, index)

    def derive(self, path: DerivationPath, save: bool = True) -> Keypair:
        """Derive the recipient keypair for ``path`` and optionally store it.

        Raises:
            NotInitialized: If no master seed exists.
        """
        self._require_capabilities()
        keypair = derive_keypair(self.master.load(), path, self.sealer)
        if save:
            self.config.ensure_dirs()
            save_keypair(self.key_file(path), keypair, derivation_path=path)
        return keypair

    def key_file(self, path: DerivationPath) -> Path:
        return self.config.keys_dir / path.key_name

    def default_keypair(self) -> Keypair:
        return load_keypair(self.config.default_key_path)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def encrypt(
        self,
        content: bytes,
        recipient_public_key: Optional[bytes] = None,
        tags: Optional[Iterable[str]] = None,
        description: str = "",
        derivation_path: Optional[DerivationPath] = None,
        filename: Optional[str] = None,
    ) -> SessionRecord:
        """Seal ``content`` and register its record.

        Sealing and artifact writes happen before the index lock is taken.

        Args:
            content: Plaintext bytes.
            recipient_public_key: Defaults to the default key's public half.
            tags: Record tags.
            description: Public description.
            derivation_path: Recorded when the recipient key was derived.
            filename: Name of the source file, checked against the
                policy's sensitive file types.

        Returns:
            The registered record.
        """
        self._require_capabilities()
        if recipient_public_key is None:
            recipient_public_key = self.default_keypair().public_key
        policy = self.index.policy
        hits = policy.content_filters.scan(content, filename)
        if hits:
            logger.warning(
                "Content matches sensitive patterns %s; it is stored encrypted only",
                hits,
            )
        record = self.encryptor.encrypt(
            content,
            recipient_public_key,
            tags=tags,
            description=description,
            derivation_path=derivation_path,
        )
        self.index.register(record)
        return record

    def decrypt(self, session_id: str, private_key: Optional[bytes] = None) -> bytes:
        """Plaintext of ``session_id``; defaults to the default private key."""
        self._require_capabilities()
        if private_key is None:
            private_key = self.default_keypair().private_key
        return self.retriever.decrypt(session_id, private_key)

    def list(self) -> SessionListing:
        return self.index.list()

    def find(self, session_id: str) -> SessionRecord:
        return self.index.find(session_id)

    def update(
        self,
        session_id: str,
        tags: Optional[Iterable[str]] = None,
        description: Optional[str] = None,
    ) -> SessionRecord:
        """Edit the mutable fields of a record and bump ``updated_at``.

        Reading the record, rewriting its metadata document and replacing
        the index entry all happen under the index lock.

        Raises:
            NotFound: If the session is not registered.
        """
        changes = {}
        if tags is not None:
            changes["tags"] = list(dict.fromkeys(tags))
        if description is not None:
            changes["description"] = description

        def change(record: SessionRecord) -> SessionRecord:
            return record.model_copy(
                update=dict(changes, updated_at=datetime.now(timezone.utc))
            )

        def persist(record: SessionRecord) -> None:
            write_document(metadata_path(self.config, session_id), record.to_document())

        updated = self.index.modify(session_id, change, persist)
        logger.info("Updated metadata of session %s", session_id)
        return updated

    def remove(self, session_id: str) -> SessionRecord:
        """Delete a session: index entry first, then both artifacts.

        Raises:
            NotFound: If the session is not registered.
        """
        record = self.index.remove(session_id)
        for path in (self.config.root / record.encryption.encrypted_file_path,
                     metadata_path(self.config, session_id)):
            try:
                os.unlink(path)
            except FileNotFoundError:
                logger.warning("Artifact already missing: %s", path)
            except OSError as err:
                raise IOFailure(
                    f"Cannot delete artifact of session {session_id}: {err.strerror}",
                    path=str(path),
                ) from err
        logger.info("Removed session %s", session_id)
        return record

    def update_policy(self, policy: SessionPolicy) -> None:
        self.index.update_policy(policy)
