"""
Tests for the master seed lifecycle: create-once, load, fingerprint,
backup export, restore and explicit regeneration.
"""
import hashlib
import os
import stat
import threading

import pytest

from sealed_sessions.exceptions import (
    AlreadyInitialized,
    ChecksumMismatch,
    IOFailure,
    NotInitialized,
    WeakSecret,
)
from sealed_sessions.vault.master import (
    MasterSecret,
    MasterSecretManager,
    backup_document,
    fingerprint,
    parse_backup,
)


@pytest.fixture
def manager(tmp_path):
    return MasterSecretManager(tmp_path / "keys" / "master.seed")


class TestInitialize:
    """Tests for create-once seed generation."""

    def test_creates_hex_seed(self, manager):
        """Test the seed file holds 64 hex chars and a newline."""
        secret = manager.initialize()
        content = manager.seed_path.read_bytes()
        assert content == secret.entropy.hex().encode() + b"\n"
        assert len(secret.entropy) == 32

    def test_seed_is_owner_only(self, manager):
        """Test the seed file is created with 0600 permissions."""
        manager.initialize()
        assert stat.S_IMODE(os.stat(manager.seed_path).st_mode) == 0o600

    def test_second_initialize_fails_and_keeps_seed(self, manager):
        """Test create-once: second call raises and leaves the seed unchanged."""
        manager.initialize()
        before = manager.seed_path.read_bytes()
        with pytest.raises(AlreadyInitialized) as exc:
            manager.initialize()
        assert str(manager.seed_path) in str(exc.value)
        assert manager.seed_path.read_bytes() == before

    def test_concurrent_initialize_single_winner(self, manager):
        """Test simultaneous init calls produce exactly one seed."""
        results, errors = [], []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                results.append(manager.initialize())
            except AlreadyInitialized as err:
                errors.append(err)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(results) == 1
        assert len(errors) == 7
        assert manager.load().entropy == results[0].entropy


class TestLoad:
    """Tests for reading the stored seed."""

    def test_load_missing(self, manager):
        """Test loading before init raises NotInitialized."""
        with pytest.raises(NotInitialized):
            manager.load()

    def test_load_roundtrip(self, manager):
        """Test load returns the generated entropy."""
        secret = manager.initialize()
        assert manager.load().entropy == secret.entropy

    @pytest.mark.parametrize("content", [b"abc\n", b"zz" * 32 + b"\n", b"00" * 32 + b"\n"])
    def test_load_weak_or_malformed(self, manager, content):
        """Test short, non-hex and all-zero seeds are rejected."""
        manager.seed_path.parent.mkdir(parents=True)
        manager.seed_path.write_bytes(content)
        with pytest.raises(WeakSecret):
            manager.load()


class TestFingerprint:
    """Tests for the backup fingerprint."""

    def test_matches_sha256sum_of_file(self, manager):
        """Test fingerprint equals sha256 of the seed file content."""
        secret = manager.initialize()
        expected = hashlib.sha256(manager.seed_path.read_bytes()).hexdigest()
        assert fingerprint(secret) == expected
        assert manager.fingerprint() == expected

    def test_repr_hides_seed(self):
        """Test repr does not expose the entropy."""
        secret = MasterSecret(bytes(range(1, 33)))
        assert secret.entropy.hex() not in repr(secret)


class TestBackup:
    """Tests for backup export and restore."""

    def test_export_requires_confirmation(self, manager, tmp_path):
        """Test nothing is written when the caller declines."""
        manager.initialize()
        destination = tmp_path / "backup.txt"
        assert manager.export_for_backup(destination, lambda: False) is None
        assert not destination.exists()

    def test_export_writes_document(self, manager, tmp_path):
        """Test confirmed export writes seed, checksum and origin."""
        secret = manager.initialize()
        destination = tmp_path / "backup.txt"
        written = manager.export_for_backup(destination, lambda: True, origin="repo-url")
        assert written == destination
        text = destination.read_text()
        assert secret.entropy.hex() in text
        assert f"Checksum: {fingerprint(secret)}" in text
        assert "Origin: repo-url" in text
        assert stat.S_IMODE(os.stat(destination).st_mode) == 0o600

    def test_export_refuses_overwrite(self, manager, tmp_path):
        """Test an existing backup file is never overwritten."""
        manager.initialize()
        destination = tmp_path / "backup.txt"
        destination.write_text("keep")
        with pytest.raises(IOFailure):
            manager.export_for_backup(destination, lambda: True)
        assert destination.read_text() == "keep"

    def test_export_without_seed(self, manager, tmp_path):
        """Test export before init raises NotInitialized."""
        with pytest.raises(NotInitialized):
            manager.export_for_backup(tmp_path / "b.txt", lambda: True)

    def test_restore_roundtrip(self, manager, tmp_path):
        """Test a backup restores the identical seed elsewhere."""
        secret = manager.initialize()
        text = backup_document(secret, origin="x")
        other = MasterSecretManager(tmp_path / "other" / "master.seed")
        restored = other.restore(text)
        assert restored.entropy == secret.entropy
        assert other.seed_path.read_bytes() == manager.seed_path.read_bytes()

    def test_restore_detects_tampering(self, manager):
        """Test a backup whose seed was altered fails the checksum."""
        secret = MasterSecret(bytes(range(1, 33)))
        text = backup_document(secret)
        tampered = text.replace(secret.entropy.hex(), "ff" + secret.entropy.hex()[2:])
        with pytest.raises(ChecksumMismatch) as exc:
            parse_backup(tampered)
        assert exc.value.expected == fingerprint(secret)
        assert not manager.exists()

    def test_restore_refuses_existing_seed(self, manager):
        """Test restore never replaces an existing seed."""
        manager.initialize()
        with pytest.raises(AlreadyInitialized):
            manager.restore(backup_document(MasterSecret(bytes(range(1, 33)))))


class TestRegenerate:
    """Tests for explicit destructive regeneration."""

    def test_declined(self, manager):
        """Test declining keeps the current seed."""
        secret = manager.initialize()
        assert manager.regenerate(lambda: False) is None
        assert manager.load().entropy == secret.entropy

    def test_confirmed(self, manager):
        """Test confirming replaces the seed."""
        secret = manager.initialize()
        new = manager.regenerate(lambda: True)
        assert new.entropy != secret.entropy
        assert manager.load().entropy == new.entropy

    def test_without_seed(self, manager):
        """Test there is nothing to regenerate before init."""
        with pytest.raises(NotInitialized):
            manager.regenerate(lambda: True)
