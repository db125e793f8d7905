"""Setup verification checks for a session vault."""
import os
import stat
import logging
from typing import NamedTuple

from ..exceptions import MissingCapability
from .config import VaultConfig
from .crypto import check_capabilities

logger = logging.getLogger("sealed_sessions.vault")

SECURE_MODE = 0o600
KEYS_IGNORE_ENTRY = ".sessions/keys"


class Check(NamedTuple):
    name: str
    ok: bool
    detail: str
    required: bool = True


def _mode_check(name: str, path) -> list[Check]:
    if not path.exists():
        return [Check(name, False, f"not found at {path} (run init)")]
    checks = [Check(name, True, f"present at {path}")]
    mode = stat.S_IMODE(os.stat(path).st_mode)
    checks.append(Check(
        f"{name} permissions",
        mode == SECURE_MODE,
        f"{mode:o}" + ("" if mode == SECURE_MODE else f" (recommended: {SECURE_MODE:o})"),
        required=False,
    ))
    return checks


def verify_setup(config: VaultConfig) -> list[Check]:
    """Run all checks; a failed ``required`` check means the setup is unusable."""
    checks = []
    try:
        check_capabilities(config.cipher_backend)
        checks.append(Check("sealing capability", True, f"x25519 + {config.cipher_backend}"))
    except MissingCapability as err:
        checks.append(Check("sealing capability", False, str(err)))

    checks.extend(_mode_check("default key", config.default_key_path))
    master = _mode_check("master seed", config.master_seed_path)
    # the seed is optional when only the static key is used
    checks.extend(c._replace(required=False) for c in master)

    checks.append(Check(
        "encrypted sessions directory",
        config.encrypted_dir.is_dir(),
        str(config.encrypted_dir),
        required=False,
    ))
    checks.append(Check(
        "session index", config.index_path.is_file(), str(config.index_path)
    ))

    gitignore = config.root / ".gitignore"
    if gitignore.is_file():
        ignored = KEYS_IGNORE_ENTRY in gitignore.read_text(errors="replace")
        checks.append(Check(
            ".gitignore",
            ignored,
            "keys directory excluded from git" if ignored
            else f"add '{KEYS_IGNORE_ENTRY}/' to .gitignore immediately",
        ))

    for check in checks:
        logger.debug("verify %s: %s (%s)", check.name, check.ok, check.detail)
    return checks
