"""Path helpers shared by the record store, relocation engine and session.

The graveyard mirrors absolute paths: ``/home/u/a.txt`` buried in
``/tmp/graveyard`` lives at ``/tmp/graveyard/home/u/a.txt``.
"""

from __future__ import annotations

import hashlib
import os
from itertools import count
from pathlib import Path, PurePath

# Binary units, largest last
_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


def _prefix_segment(drive: str) -> str:
    """Turn a volume prefix into an ordinary path segment.

    ``C:`` is common enough to get a readable name; every other prefix
    (UNC shares, ``\\\\?\\`` verbatim prefixes) is hashed.
    """
    if len(drive) == 2 and drive[1] == ":" and drive[0].isalpha():
        return f"DISK_{drive[0].upper()}"
    return hashlib.sha256(drive.encode("utf-8", "surrogateescape")).hexdigest()[:16]


def join_absolute(root: str | os.PathLike[str], path: str | os.PathLike[str]) -> Path:
    """Concatenate *path* onto *root*, even when *path* is absolute.

    The root marker is dropped and any drive/volume prefix is folded into a
    single segment, so every path maps to a subtree of *root*.
    """
    right = path if isinstance(path, PurePath) else PurePath(path)
    result = Path(root)
    parts = list(right.parts)
    if right.anchor:
        parts = parts[1:]
    if right.drive:
        result = result / _prefix_segment(right.drive)
    return result.joinpath(*parts)


def symlink_exists(path: str | os.PathLike[str]) -> bool:
    """True if anything exists at *path*, dangling symlinks included."""
    return os.path.lexists(path)


def rename_grave(grave: str | os.PathLike[str]) -> Path:
    """Return the first free ``<grave>~N`` name, starting at N=1."""
    name = os.fspath(grave)
    for i in count(1):
        candidate = Path(f"{name}~{i}")
        if not symlink_exists(candidate):
            return candidate
    raise AssertionError("unreachable")


def is_within(path: str | os.PathLike[str], parent: str | os.PathLike[str]) -> bool:
    """Component-wise prefix test (``/g/a`` is not within ``/g/ab``)."""
    return PurePath(path).is_relative_to(PurePath(parent))


def humanize_bytes(size: int) -> str:
    """Format a byte count, e.g. ``100 B``, ``1.0 KiB``, ``1.5 MiB``."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    unit = _UNITS[0]
    for unit in _UNITS[1:]:
        value /= 1024
        if value < 1024:
            break
    return f"{value:.1f} {unit}"
