"""
Tests for configuration, key files and setup verification.
"""
import os
import stat

import pytest
from pydantic import ValidationError

from sealed_sessions.exceptions import IOFailure, NotInitialized
from sealed_sessions.vault import DerivationPath, SessionVault, VaultConfig
from sealed_sessions.vault.keystore import key_derivation_path, load_keypair, save_keypair
from sealed_sessions.vault.verify import verify_setup


class TestVaultConfig:
    """Tests for validated settings and layout."""

    def test_layout(self, tmp_path):
        """Test paths hang off <root>/.sessions."""
        config = VaultConfig(root=tmp_path)
        assert config.master_seed_path == tmp_path / ".sessions" / "keys" / "master.seed"
        assert config.index_path == tmp_path / ".sessions" / "session-index.json"
        assert config.encrypted_dir == tmp_path / ".sessions" / "encrypted"

    def test_invalid_cipher(self, tmp_path):
        """Test unsupported cipher backends are rejected."""
        with pytest.raises(ValidationError):
            VaultConfig(root=tmp_path, cipher_backend="des")

    def test_invalid_purpose(self, tmp_path):
        """Test the purpose segment cannot contain '/'."""
        with pytest.raises(ValidationError):
            VaultConfig(root=tmp_path, purpose="a/b")

    def test_from_env(self, tmp_path, monkeypatch):
        """Test settings are read from SESSIONS_* variables."""
        monkeypatch.setenv("SESSIONS_ROOT", str(tmp_path))
        monkeypatch.setenv("SESSIONS_CIPHER_BACKEND", "ChaCha20")
        monkeypatch.setenv("SESSIONS_SCOPE_IDENTIFIER", "repo")
        monkeypatch.setenv("SESSIONS_PURPOSE", "archive")
        config = VaultConfig.from_env()
        assert config.root == tmp_path
        assert config.cipher_backend == "chacha20"
        assert config.scope_identifier == "repo"
        assert config.purpose == "archive"

    def test_ensure_dirs_restricts_keys(self, tmp_path):
        """Test the keys directory is owner-only."""
        config = VaultConfig(root=tmp_path)
        config.ensure_dirs()
        assert stat.S_IMODE(os.stat(config.keys_dir).st_mode) == 0o700
        assert config.encrypted_dir.is_dir()


class TestKeyStore:
    """Tests for keypair files."""

    def test_save_and_load(self, vault, tmp_path):
        """Test a saved keypair loads back identically with 0600 mode."""
        keypair = vault.sealer.generate_keypair()
        path = save_keypair(tmp_path / "k.key", keypair, DerivationPath("s", "0", "dev", 1))
        assert load_keypair(path) == keypair
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert key_derivation_path(path) == DerivationPath("s", "0", "dev", 1)

    def test_no_overwrite(self, vault, tmp_path):
        """Test random keys are never silently replaced."""
        path = save_keypair(tmp_path / "k.key", vault.sealer.generate_keypair())
        with pytest.raises(FileExistsError):
            save_keypair(path, vault.sealer.generate_keypair(), overwrite=False)

    def test_missing(self, tmp_path):
        """Test a missing key file raises NotInitialized."""
        with pytest.raises(NotInitialized):
            load_keypair(tmp_path / "absent.key")

    def test_mismatched_public_key(self, vault, tmp_path):
        """Test a key file whose halves disagree is rejected."""
        a = vault.sealer.generate_keypair()
        b = vault.sealer.generate_keypair()
        path = save_keypair(tmp_path / "k.key", a)
        path.write_text(path.read_text().replace(a.public_hex, b.public_hex))
        with pytest.raises(IOFailure):
            load_keypair(path)

    def test_setup_keeps_default_key(self, vault):
        """Test running setup again keeps the existing default key."""
        before = vault.default_keypair()
        assert SessionVault(vault.config).setup() == before


class TestVerify:
    """Tests for setup verification."""

    def _by_name(self, checks):
        return {c.name: c for c in checks}

    def test_fresh_directory(self, config):
        """Test an uninitialized root fails the required checks."""
        checks = self._by_name(verify_setup(config))
        assert checks["sealing capability"].ok
        assert not checks["default key"].ok
        assert not checks["session index"].ok

    def test_initialized(self, seeded_vault):
        """Test a fully initialized vault passes every check."""
        checks = verify_setup(seeded_vault.config)
        assert all(c.ok for c in checks), checks

    def test_loose_permissions_warn(self, vault):
        """Test a world-readable key is flagged but not required."""
        os.chmod(vault.config.default_key_path, 0o644)
        checks = self._by_name(verify_setup(vault.config))
        perms = checks["default key permissions"]
        assert not perms.ok
        assert not perms.required

    def test_gitignore(self, vault):
        """Test .gitignore must exclude the keys directory when present."""
        gitignore = vault.config.root / ".gitignore"
        gitignore.write_text("*.pyc\n")
        assert not self._by_name(verify_setup(vault.config))[".gitignore"].ok
        gitignore.write_text(".sessions/keys/\n")
        assert self._by_name(verify_setup(vault.config))[".gitignore"].ok
