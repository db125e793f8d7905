"""
Session Index — Public catalog of encrypted session metadata.

The index document (``session-index.json``) is the source of truth for
which sessions exist. Every read-modify-write of it happens under an
exclusive ``flock`` on ``index.lock``, held only for that step; sealing
happens before the lock is taken.
"""
import fcntl
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from pydantic import ValidationError

from ..exceptions import DuplicateId, IOFailure, NotFound, NotInitialized
from ..models import IndexDocument, SessionPolicy, SessionRecord
from .config import VaultConfig
from .storage import read_document, write_document

logger = logging.getLogger("sealed_sessions.vault")


class SessionListing:
    """Lazy, restartable view of the index ordered by ``created_at``.

    The index is read when iteration starts, so each pass reflects the
    current state on disk.
    """

    def __init__(self, index: "SessionIndex"):
        self._index = index

    def __iter__(self) -> Iterator[SessionRecord]:
        document = self._index.load()
        yield from sorted(
            document.sessions, key=lambda r: (r.created_at, r.session_id)
        )

    def __len__(self) -> int:
        return len(self._index.load().sessions)


class SessionIndex:
    """Append-safe index of :class:`SessionRecord` entries."""

    def __init__(self, config: VaultConfig):
        self.config = config
        self.path = config.index_path

    # ------------------------------------------------------------------
    # Locking and persistence
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        lock_path = self.config.lock_path
        try:
            fp = open(lock_path, "a")
        except OSError as err:
            raise IOFailure(
                f"Cannot open index lock: {err.strerror}", path=str(lock_path)
            ) from err
        with fp:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fp.fileno(), fcntl.LOCK_UN)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> IndexDocument:
        """Read the index document.

        Raises:
            NotInitialized: If the index has not been created.
            IOFailure: If the document is unreadable or malformed.
        """
        try:
            document = read_document(self.path)
        except FileNotFoundError as err:
            raise NotInitialized(
                "Session index not found; run init first", path=str(self.path)
            ) from err
        try:
            return IndexDocument.model_validate(document)
        except ValidationError as err:
            raise IOFailure(f"Malformed session index: {err}", path=str(self.path)) from err

    def _save(self, document: IndexDocument) -> None:
        document.refresh_statistics()
        write_document(self.path, document.model_dump(mode="json"))

    def create(self, policy: Optional[SessionPolicy] = None) -> bool:
        """Create an empty index if none exists.

        Returns:
            True if a new index was written.
        """
        self.config.sessions_dir.mkdir(parents=True, exist_ok=True)
        with self._locked():
            if self.exists():
                return False
            self._save(IndexDocument(policy=policy or SessionPolicy()))
        logger.info("Created session index at %s", self.path)
        return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register(self, record: SessionRecord) -> None:
        """Append ``record``.

        Raises:
            IOFailure: If the record's ciphertext is not on disk.
            DuplicateId: If ``session_id`` is already registered.
        """
        ct_path = self.config.root / record.encryption.encrypted_file_path
        if not ct_path.is_file():
            raise IOFailure(
                f"Refusing to register session {record.session_id}: ciphertext missing",
                path=str(ct_path),
            )
        with self._locked():
            document = self.load()
            if any(s.session_id == record.session_id for s in document.sessions):
                raise DuplicateId(
                    f"Session {record.session_id} is already registered",
                    path=str(self.path),
                )
            document.sessions.append(record)
            self._save(document)
        logger.debug("Registered session %s", record.session_id)

    def list(self) -> SessionListing:
        return SessionListing(self)

    def find(self, session_id: str) -> SessionRecord:
        """Return the record for ``session_id``.

        Raises:
            NotFound: If no such session is registered.
        """
        for record in self.load().sessions:
            if record.session_id == session_id:
                return record
        raise NotFound(f"Session {session_id} not found in index", path=str(self.path))

    @property
    def policy(self) -> SessionPolicy:
        return self.load().policy

    def update_policy(self, policy: SessionPolicy) -> None:
        """Replace the policy block; records are left untouched."""
        with self._locked():
            document = self.load()
            document.policy = policy
            self._save(document)
        logger.info("Index policy updated to %s", policy.policy_name)

    def modify(
        self,
        session_id: str,
        change: Callable[[SessionRecord], SessionRecord],
        persist: Optional[Callable[[SessionRecord], None]] = None,
    ) -> SessionRecord:
        """Apply ``change`` to the current entry in one locked step.

        ``persist`` receives the new record while the lock is still held,
        after the entry was found and before the index is saved.

        Raises:
            NotFound: If the session is not registered.
        """
        with self._locked():
            document = self.load()
            for pos, existing in enumerate(document.sessions):
                if existing.session_id == session_id:
                    break
            else:
                raise NotFound(
                    f"Session {session_id} not found in index", path=str(self.path)
                )
            updated = change(existing)
            if updated.session_id != session_id:
                raise ValueError("change() must not alter the session id")
            if persist is not None:
                persist(updated)
            document.sessions[pos] = updated
            self._save(document)
        return updated

    def remove(self, session_id: str) -> SessionRecord:
        """Drop the entry for ``session_id`` and return it.

        Raises:
            NotFound: If the session is not registered.
        """
        with self._locked():
            document = self.load()
            for pos, existing in enumerate(document.sessions):
                if existing.session_id == session_id:
                    del document.sessions[pos]
                    self._save(document)
                    return existing
        raise NotFound(f"Session {session_id} not found in index", path=str(self.path))

    def compact(self) -> List[str]:
        """Remove entries whose ciphertext was deliberately deleted.

        Returns:
            Ids of the removed entries.
        """
        with self._locked():
            document = self.load()
            kept, dropped = [], []
            for record in document.sessions:
                if (self.config.root / record.encryption.encrypted_file_path).is_file():
                    kept.append(record)
                else:
                    dropped.append(record.session_id)
            if dropped:
                document.sessions = kept
                self._save(document)
        if dropped:
            logger.info("Compacted index: removed %d entr(ies)", len(dropped))
        return dropped
