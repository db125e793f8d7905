"""Shared fixtures for the session vault tests."""
import os

import pytest

from sealed_sessions.exceptions import DecryptionFailed
from sealed_sessions.vault import Keypair, SessionVault, VaultConfig

REPO_URL = "https://github.com/example/sessions.git"


class FakeSealer:
    """In-memory stand-in for the sealing primitive.

    Keys are real X25519 keypairs so they can be stored, but sealing is
    just ``recipient public key || plaintext``. Counts ``open`` calls so
    tests can assert it was never reached.
    """

    algorithm = "test-plain"

    def __init__(self):
        self.open_calls = 0

    def keypair_from_seed(self, seed: bytes) -> Keypair:
        return Keypair.from_private_bytes(seed)

    def generate_keypair(self) -> Keypair:
        return Keypair.from_private_bytes(os.urandom(32))

    def seal(self, plaintext: bytes, recipient_public_key: bytes) -> bytes:
        return recipient_public_key + plaintext

    def open(self, ciphertext: bytes, private_key: bytes) -> bytes:
        self.open_calls += 1
        if ciphertext[:32] != Keypair.from_private_bytes(private_key).public_key:
            raise DecryptionFailed("wrong key")
        return ciphertext[32:]


@pytest.fixture
def config(tmp_path):
    """Vault configuration rooted in a temp directory."""
    return VaultConfig(root=tmp_path, scope_identifier=REPO_URL)


@pytest.fixture
def vault(config):
    """Vault with directories, default key and empty index."""
    vault = SessionVault(config)
    vault.setup()
    return vault


@pytest.fixture
def seeded_vault(vault):
    """Vault with a master seed."""
    vault.master.initialize()
    return vault


@pytest.fixture
def fake_sealer():
    return FakeSealer()


@pytest.fixture
def fake_vault(config, fake_sealer):
    """Vault using the in-memory sealer."""
    vault = SessionVault(config, sealer=fake_sealer)
    vault.setup()
    return vault
