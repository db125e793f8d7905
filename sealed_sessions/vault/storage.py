"""
Vault Storage — Durable local file writes and JSON documents.

All structured documents are orjson-encoded. Writes go through a temp file
in the target directory followed by ``os.replace`` so readers never observe
a half-written document.
"""
import os
import tempfile
from pathlib import Path
from typing import Any

import orjson

from ..exceptions import IOFailure

_DUMP_OPTIONS = orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS


def serialize_document(document: Any) -> bytes:
    return orjson.dumps(document, option=_DUMP_OPTIONS) + b"\n"


def deserialize_document(data: bytes) -> Any:
    return orjson.loads(data)


def _fsync_dir(directory: Path) -> None:
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def write_atomic(path: Path, data: bytes, mode: int = 0o644) -> None:
    """Replace ``path`` with ``data`` atomically and durably.

    Raises:
        IOFailure: If the directory is missing or not writable.
    """
    path = Path(path)
    try:
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
                fp.flush()
                os.fsync(fp.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        _fsync_dir(path.parent)
    except OSError as err:
        raise IOFailure(f"Cannot write {path.name}: {err.strerror}", path=str(path)) from err


def write_exclusive(path: Path, data: bytes, mode: int = 0o600) -> None:
    """Create ``path`` with ``data``; fails with FileExistsError if present.

    Uses O_CREAT | O_EXCL, which makes the create-if-absent step atomic
    across processes.
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    try:
        view = memoryview(data)
        while view:
            written = os.write(fd, view)
            view = view[written:]
        os.fsync(fd)
    except BaseException:
        os.close(fd)
        os.unlink(path)
        raise
    os.close(fd)
    _fsync_dir(Path(path).parent)


def read_bytes(path: Path) -> bytes:
    """Read a file, wrapping OS errors other than a missing file."""
    try:
        return Path(path).read_bytes()
    except FileNotFoundError:
        raise
    except OSError as err:
        raise IOFailure(f"Cannot read {Path(path).name}: {err.strerror}", path=str(path)) from err


def write_document(path: Path, document: Any, mode: int = 0o644) -> None:
    write_atomic(path, serialize_document(document), mode=mode)


def read_document(path: Path) -> Any:
    data = read_bytes(path)
    try:
        return deserialize_document(data)
    except orjson.JSONDecodeError as err:
        raise IOFailure(f"Malformed document: {err}", path=str(path)) from err
