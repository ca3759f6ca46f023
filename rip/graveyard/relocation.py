"""Move any filesystem entry between two paths, across mount points.

A single ``os.rename`` is tried first. When that is impossible (another
device) or disabled, the entry is copied and the source removed. Copying
is decided per entry type:

- regular files are copied with their metadata,
- symlinks are recreated (their target is never followed),
- FIFOs are recreated with the same permission bits,
- anything else (sockets, devices) cannot be copied; the user may choose
  to delete it for good, leaving a marker file behind.

Files above :data:`BIG_FILE_THRESHOLD` bytes may be deleted instead of
copied, after asking.
"""

from __future__ import annotations

import enum
import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Callable

import click

from rip.paths import humanize_bytes
from rip.prompt import ConfirmationChannel

log = logging.getLogger(__name__)

BIG_FILE_THRESHOLD = 500_000_000  # bytes

MARKER_TEXT = (
    "This is a marker for a file that was permanently deleted.  "
    "Requiescat in pace.\n"
)


class EntryKind(enum.Enum):
    DIRECTORY = "directory"
    REGULAR = "regular file"
    SYMLINK = "symlink"
    FIFO = "fifo"
    OTHER = "special file"


def entry_kind(st: os.stat_result) -> EntryKind:
    """Classify an ``lstat`` result. Unknown modes are :attr:`EntryKind.OTHER`."""
    mode = st.st_mode
    if stat.S_ISLNK(mode):
        return EntryKind.SYMLINK
    if stat.S_ISDIR(mode):
        return EntryKind.DIRECTORY
    if stat.S_ISREG(mode):
        return EntryKind.REGULAR
    if stat.S_ISFIFO(mode):
        return EntryKind.FIFO
    return EntryKind.OTHER


class RelocationError(OSError):
    """A move failed. Carries both paths and the stage that failed.

    Stages: ``source`` (source vanished or is unreadable), ``parent``
    (destination parent could not be created), ``copy`` (destination may
    hold partial content) and ``remove`` (everything was copied but the
    source could not be deleted).
    """

    def __init__(
        self,
        message: str,
        source: Path,
        dest: Path,
        stage: str,
        cause: OSError | None = None,
    ) -> None:
        super().__init__(message)
        # errno of the underlying failure, None when there is none
        self.errno = cause.errno if cause is not None else None
        self.source = source
        self.dest = dest
        self.stage = stage

    @property
    def partial(self) -> bool:
        return self.stage == "copy"


def copy_entry(
    source: Path,
    dest: Path,
    confirm: ConfirmationChannel,
    echo: Callable[..., None] = click.echo,
    big_file_threshold: int = BIG_FILE_THRESHOLD,
) -> bool:
    """Copy a single non-directory entry from *source* to *dest*.

    Returns
    -------
    bool
        False if the user chose to delete an oversized file instead of
        copying it; nothing was created at *dest* then.
    """
    st = os.lstat(source)
    kind = entry_kind(st)

    if kind is EntryKind.DIRECTORY:
        raise IsADirectoryError(f"{source} is a directory; use move_dir()")

    if st.st_size > big_file_threshold:
        echo(f"About to copy a big file ({source} is {humanize_bytes(st.st_size)})")
        if confirm.ask("Permanently delete this file instead?"):
            return False

    if kind is EntryKind.REGULAR:
        shutil.copy2(source, dest, follow_symlinks=False)
    elif kind is EntryKind.SYMLINK:
        os.symlink(os.readlink(source), dest)
    elif kind is EntryKind.FIFO:
        os.mkfifo(dest, stat.S_IMODE(st.st_mode))
    else:
        # Reading sockets and devices as files is never what we want
        error = shutil.SpecialFileError(f"`{source}` is a {kind.value} and cannot be copied")
        echo(f"Non-regular file or directory: {source}")
        if not confirm.ask("Permanently delete the file?"):
            raise error
        Path(dest).write_text(MARKER_TEXT)
    return True


def move_dir(
    source: Path,
    dest: Path,
    confirm: ConfirmationChannel,
    echo: Callable[..., None] = click.echo,
    big_file_threshold: int = BIG_FILE_THRESHOLD,
) -> None:
    """Copy the tree at *source* to *dest*, then delete *source*."""
    _copy_tree(Path(source), Path(dest), confirm, echo, big_file_threshold)
    try:
        shutil.rmtree(source)
    except OSError as exc:
        raise RelocationError(
            f"Failed to remove dir: {source}: {exc}", Path(source), Path(dest), "remove", exc
        ) from exc


def _copy_tree(
    source: Path,
    dest: Path,
    confirm: ConfirmationChannel,
    echo: Callable[..., None],
    big_file_threshold: int,
) -> None:
    try:
        dest.mkdir(exist_ok=True)
    except OSError as exc:
        raise RelocationError(
            f"Failed to create dir: {source} in {dest}: {exc}", source, dest, "copy", exc
        ) from exc

    try:
        entries = sorted(os.scandir(source), key=lambda e: e.name)
    except OSError as exc:
        raise RelocationError(
            f"Failed to read dir: {source}: {exc}", source, dest, "copy", exc
        ) from exc

    for entry in entries:
        child_dest = dest / entry.name
        if entry.is_dir(follow_symlinks=False):
            _copy_tree(Path(entry.path), child_dest, confirm, echo, big_file_threshold)
            continue
        try:
            copy_entry(Path(entry.path), child_dest, confirm, echo, big_file_threshold)
        except OSError as exc:
            raise RelocationError(
                f"Failed to copy file from {entry.path} to {child_dest}: {exc}",
                Path(entry.path),
                child_dest,
                "copy", exc
            ) from exc

    try:
        shutil.copystat(source, dest, follow_symlinks=False)
    except OSError:
        log.debug("Could not copy permissions of %s", source)


def relocate(
    source: Path,
    dest: Path,
    confirm: ConfirmationChannel,
    echo: Callable[..., None] = click.echo,
    allow_fast_path: bool = True,
    big_file_threshold: int = BIG_FILE_THRESHOLD,
) -> bool:
    """Move *source* to *dest*, whatever kind of entry it is.

    Parameters
    ----------
    source:
        Entry to move. Symlinks are moved, never followed.
    dest:
        Path the entry will occupy. Must not exist; missing parents are
        created.
    confirm:
        Asked before destroying instead of copying.
    allow_fast_path:
        Try a single ``os.rename`` first. Disable to force copy-then-delete.

    Returns
    -------
    bool
        True if the entry now lives at *dest*; False if it was deleted
        instead of copied (oversized file the user chose to drop).
    """
    source, dest = Path(source), Path(dest)

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RelocationError(
            f"Could not create parent directory of {dest}: {exc}", source, dest, "parent", exc
        ) from exc

    if allow_fast_path:
        try:
            os.rename(source, dest)
        except OSError as exc:
            log.debug("Rename %s -> %s failed (%s); copying instead", source, dest, exc)
        else:
            log.debug("Renamed %s -> %s", source, dest)
            return True

    try:
        st = os.lstat(source)
    except OSError as exc:
        raise RelocationError(f"Cannot move {source}: {exc}", source, dest, "source", exc) from exc

    if entry_kind(st) is EntryKind.DIRECTORY:
        move_dir(source, dest, confirm, echo, big_file_threshold)
        log.debug("Copied tree %s -> %s", source, dest)
        return True

    try:
        copied = copy_entry(source, dest, confirm, echo, big_file_threshold)
    except OSError as exc:
        raise RelocationError(
            f"Failed to copy file from {source} to {dest}: {exc}", source, dest, "copy", exc
        ) from exc

    try:
        os.unlink(source)
    except OSError as exc:
        raise RelocationError(
            f"Failed to remove file: {source}: {exc}", source, dest, "remove", exc
        ) from exc

    if copied:
        log.debug("Copied %s -> %s", source, dest)
    else:
        log.info("Deleted %s instead of copying it", source)
    return copied
