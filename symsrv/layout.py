"""Symbol store directory layout and cache writes.

A symbol store keeps every file under ``<name>/<hash>/<name>``. Large stores
shard entries by the first two characters of the file name; this is signalled
by an ``index2.txt`` file in the root of the store:

- Single-tier: ``<cache>/ntdll.pdb/<hash>/ntdll.pdb``
- Two-tier:    ``<cache>/nt/ntdll.pdb/<hash>/ntdll.pdb``

Remote URLs never carry the tier prefix.

Reference: https://learn.microsoft.com/en-us/windows-hardware/drivers/debugger/symbol-store-folder-tree
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Union

from .errors import StorageError

TWO_TIER_MARKER = "index2.txt"

PathLike = Union[str, "os.PathLike[str]"]


@dataclass(frozen=True)
class CacheEntry:
    """Where a symbol file lives (or would live) in a local cache."""
    path: Path
    exists: bool


def is_two_tier(cache_path: PathLike) -> bool:
    """Determine if a symbol store uses a two-tier directory structure.

    Checked against the filesystem on every call; the layout of a store can
    change between runs.
    """
    return (Path(cache_path) / TWO_TIER_MARKER).exists()


def two_tier_prefix(name: str) -> str:
    """Return the two-tier prefix for a filename (first two characters, lowercase).

    For filenames shorter than 2 characters, returns the filename itself.
    """
    return name[:2].lower()


def _check_component(kind: str, value: str):
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise ValueError(f"invalid symbol file {kind}: {value!r}")


def relative_path(filename: str, hash_str: str, two_tier: bool = False) -> PurePosixPath:
    """Relative location of ``filename`` inside a store.

    Both the name and the hash become path components, so either one being
    empty, ``.``, ``..`` or containing a separator raises ``ValueError``.
    """
    _check_component("name", filename)
    _check_component("hash", hash_str)
    rel = PurePosixPath(filename, hash_str, filename)
    if two_tier:
        return PurePosixPath(two_tier_prefix(filename)) / rel
    return rel


def cache_file_path(cache_path: PathLike, filename: str, hash_str: str) -> Path:
    """Absolute path of ``filename`` in a local cache, honouring its tiering."""
    root = Path(cache_path)
    rel = relative_path(filename, hash_str, two_tier=is_two_tier(root))
    return root.joinpath(*rel.parts)


def server_file_url(server_url: str, filename: str, hash_str: str) -> str:
    """Download URL for ``filename`` on a symbol server."""
    rel = relative_path(filename, hash_str)
    return f"{server_url.rstrip('/')}/{rel}"


def resolve_cache_entry(cache_path: PathLike, filename: str, hash_str: str) -> CacheEntry:
    """
    Locate a symbol file in a local cache.

    Raises:
        StorageError: if the cache cannot be inspected
    """
    try:
        path = cache_file_path(cache_path, filename, hash_str)
        return CacheEntry(path=path, exists=path.is_file())
    except OSError as e:
        raise StorageError(f"cannot inspect symbol cache {cache_path}: {e}", path=cache_path) from e


def write_atomic(path: PathLike, data: bytes) -> Path:
    """
    Write ``data`` to ``path`` so readers never see a partial file.

    The bytes go to a temporary file in the destination directory which is
    then renamed over the destination. Concurrent writers of the same symbol
    race harmlessly: the content is identical and the last rename wins.

    Args:
        path: Destination file
        data: File contents

    Returns:
        The destination path

    Raises:
        StorageError: if the file cannot be written
    """
    dest = Path(path)
    tmp_name = None
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".tmp", dir=str(dest.parent))
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, dest)
    except BaseException as e:
        if tmp_name is not None:
            _discard(tmp_name)
        if isinstance(e, OSError):
            raise StorageError(f"cannot write {dest}: {e}", path=dest) from e
        raise
    return dest


def _discard(tmp_name: str):
    try:
        os.unlink(tmp_name)
    except FileNotFoundError:
        pass
