"""
Tests for the session index: registration, lookup, ordering, policy and
compaction.
"""
import orjson
import pytest

from sealed_sessions.exceptions import DuplicateId, IOFailure, NotFound, NotInitialized
from sealed_sessions.models import INDEX_VERSION, KeyManagement, SessionPolicy
from sealed_sessions.vault import SessionIndex


@pytest.fixture
def index(fake_vault):
    return fake_vault.index


@pytest.fixture
def make_record(fake_vault):
    """Encrypt a blob without registering it."""
    def _make(content=b"content", **kwargs):
        public_key = fake_vault.default_keypair().public_key
        return fake_vault.encryptor.encrypt(content, public_key, **kwargs)
    return _make


class TestIndexCreation:
    """Tests for the empty index document."""

    def test_document_shape(self, index):
        """Test the new index has version, sessions, policy and statistics."""
        document = orjson.loads(index.path.read_bytes())
        assert document["index_version"] == INDEX_VERSION
        assert document["sessions"] == []
        assert document["policy"]["auto_encrypt"] is False
        assert document["statistics"]["total_sessions"] == 0

    def test_create_is_idempotent(self, index, make_record):
        """Test create() keeps an existing index."""
        index.register(make_record())
        assert index.create() is False
        assert len(index.list()) == 1

    def test_missing_index(self, config):
        """Test loading an absent index raises NotInitialized."""
        with pytest.raises(NotInitialized):
            SessionIndex(config).load()

    def test_malformed_index(self, index):
        """Test a corrupt document raises IOFailure."""
        index.path.write_bytes(b"{not json")
        with pytest.raises(IOFailure):
            index.load()


class TestRegister:
    """Tests for appending records."""

    def test_register_and_find(self, index, make_record):
        """Test a registered record can be found by id."""
        record = make_record(tags=["a"], description="first")
        index.register(record)
        found = index.find(record.session_id)
        assert found == record

    def test_duplicate_rejected(self, index, make_record):
        """Test registering the same id twice raises DuplicateId."""
        record = make_record()
        index.register(record)
        with pytest.raises(DuplicateId):
            index.register(record)
        assert len(index.list()) == 1

    def test_requires_ciphertext(self, index, make_record, config):
        """Test an entry is never created before its ciphertext exists."""
        record = make_record()
        (config.root / record.encryption.encrypted_file_path).unlink()
        with pytest.raises(IOFailure):
            index.register(record)
        with pytest.raises(NotFound):
            index.find(record.session_id)

    def test_statistics_updated(self, index, make_record):
        """Test statistics track the number of sessions."""
        for _ in range(3):
            index.register(make_record())
        stats = index.load().statistics
        assert stats.total_sessions == 3
        assert stats.encrypted_sessions == 3

    def test_find_missing(self, index):
        """Test an unknown id raises NotFound naming the id."""
        with pytest.raises(NotFound) as exc:
            index.find("20250101-000000-000000-deadbeef")
        assert "deadbeef" in str(exc.value)


class TestListing:
    """Tests for ordered, lazy listing."""

    def test_ordered_by_creation(self, index, make_record):
        """Test records come back in creation order."""
        records = [make_record() for _ in range(5)]
        for record in reversed(records):
            index.register(record)
        assert [r.session_id for r in index.list()] == [r.session_id for r in records]

    def test_listing_is_lazy_and_restartable(self, index, make_record):
        """Test a listing reflects records added after it was created."""
        listing = index.list()
        assert list(listing) == []
        index.register(make_record())
        assert len(list(listing)) == 1
        assert len(list(listing)) == 1


class TestPolicy:
    """Tests for the policy block."""

    def test_update_policy_keeps_records(self, index, make_record):
        """Test replacing the policy leaves existing records untouched."""
        record = make_record()
        index.register(record)
        policy = SessionPolicy(
            policy_name="strict",
            require_encryption=True,
            key_management=KeyManagement(key_rotation_days=30),
        )
        index.update_policy(policy)
        assert index.policy.policy_name == "strict"
        assert index.policy.key_rotation_days == 30
        assert index.find(record.session_id) == record


class TestModify:
    """Tests for locked in-place edits."""

    def test_modify_persists_inside_lock(self, index, make_record):
        """Test persist() sees the new record and the index stores it."""
        record = make_record(description="before")
        index.register(record)
        seen = []
        updated = index.modify(
            record.session_id,
            lambda r: r.model_copy(update={"description": "after"}),
            seen.append,
        )
        assert seen == [updated]
        assert index.find(record.session_id).description == "after"

    def test_modify_missing(self, index):
        """Test modifying an unknown id raises NotFound without calling persist()."""
        seen = []
        with pytest.raises(NotFound):
            index.modify("nope", lambda r: r, seen.append)
        assert seen == []

    def test_modify_cannot_change_id(self, index, make_record):
        """Test change() may not rename the entry."""
        record = make_record()
        index.register(record)
        with pytest.raises(ValueError):
            index.modify(record.session_id, lambda r: r.model_copy(update={"session_id": "other"}))
        assert index.find(record.session_id) == record

class TestRemoval:
    """Tests for removing and compacting entries."""

    def test_remove(self, index, make_record):
        """Test remove() drops the entry and returns it."""
        record = make_record()
        index.register(record)
        assert index.remove(record.session_id) == record
        with pytest.raises(NotFound):
            index.remove(record.session_id)

    def test_compact(self, index, make_record, config):
        """Test compact() drops entries whose ciphertext was deleted."""
        kept, gone = make_record(), make_record()
        index.register(kept)
        index.register(gone)
        (config.root / gone.encryption.encrypted_file_path).unlink()
        assert index.compact() == [gone.session_id]
        assert [r.session_id for r in index.list()] == [kept.session_id]
        assert index.compact() == []
