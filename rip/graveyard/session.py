"""Graveyard session: bury, unbury, seance and decompose.

A :class:`Graveyard` is bound to one graveyard root and owns its
:class:`~rip.graveyard.record.RecordStore`. It drives the relocation engine
and the record, talks to the user only through the confirmation channel
and the ``echo`` output callable it was built with.

Not safe for concurrent use: two processes burying into the same
graveyard can lose record lines.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, Sequence

import click

from rip.graveyard.record import (
    Record,
    RecordNotFoundError,
    RecordStore,
    check_representable,
)
from rip.graveyard.relocation import BIG_FILE_THRESHOLD, RelocationError, relocate
from rip.paths import (
    humanize_bytes,
    is_within,
    join_absolute,
    rename_grave,
    symlink_exists,
)
from rip.prompt import ConfirmationChannel, UserAbort

log = logging.getLogger(__name__)

LINES_TO_INSPECT = 6
FILES_TO_INSPECT = 6


class TargetNotFoundError(FileNotFoundError):
    """Raised when a bury target does not exist."""


class BuryError(OSError):
    """Raised when a target cannot be buried at all."""


class UnburyError(OSError):
    """Raised after an unbury batch in which some entries failed to return."""

    def __init__(self, failures: list[RelocationError]) -> None:
        lines = "\n".join(f"  {exc}" for exc in failures)
        super().__init__(f"Unbury failed for {len(failures)} grave(s):\n{lines}")
        self.failures = failures


def resolve_target(target: str | os.PathLike[str], cwd: Path) -> Path:
    """Absolute path of *target* as it will be recorded.

    Symlinks keep their own name (only the containing directory is
    canonicalized); everything else is fully canonicalized.
    """
    joined = Path(os.path.abspath(cwd / target))
    if joined.is_symlink():
        return Path(os.path.realpath(joined.parent)) / joined.name
    return Path(os.path.realpath(joined))


def _remove_entry(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class Graveyard:
    """A graveyard root plus its record.

    Parameters
    ----------
    root:
        Graveyard directory. Made absolute and canonical; created on first
        bury.
    confirm:
        Confirmation channel for every yes/no question.
    echo:
        Output channel for notifications (default :func:`click.echo`).
    allow_fast_path:
        Try ``os.rename`` before copying.
    big_file_threshold:
        Size above which copying asks to delete instead.
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        confirm: ConfirmationChannel,
        echo: Callable[..., None] = click.echo,
        allow_fast_path: bool = True,
        big_file_threshold: int = BIG_FILE_THRESHOLD,
        inspect_lines: int = LINES_TO_INSPECT,
        inspect_files: int = FILES_TO_INSPECT,
    ) -> None:
        self.root = Path(os.path.realpath(os.path.abspath(root)))
        self.record = RecordStore(self.root)
        self.confirm = confirm
        self.echo = echo
        self.allow_fast_path = allow_fast_path
        self.big_file_threshold = big_file_threshold
        self.inspect_lines = inspect_lines
        self.inspect_files = inspect_files

    def _relocate(self, source: Path, dest: Path) -> bool:
        return relocate(
            source,
            dest,
            self.confirm,
            echo=self.echo,
            allow_fast_path=self.allow_fast_path,
            big_file_threshold=self.big_file_threshold,
        )

    def _ensure_root(self) -> None:
        if not self.root.exists():
            self.root.mkdir(parents=True, mode=0o700)
            log.info("Created graveyard at %s", self.root)

    # ------------------------------------------------------------------
    # Bury
    # ------------------------------------------------------------------

    def bury(
        self,
        targets: Iterable[str | os.PathLike[str]],
        inspect: bool = False,
        cwd: Path | None = None,
    ) -> list[Path]:
        """Move each target into the graveyard and record it.

        Stops at the first failing target; targets buried before it stay
        buried. Returns the holding paths of the entries now in the
        graveyard.
        """
        cwd = Path(cwd) if cwd else Path.cwd()
        self._ensure_root()
        buried: list[Path] = []

        for target in targets:
            if not symlink_exists(cwd / target):
                raise TargetNotFoundError(
                    f"Cannot remove {target}: no such file or directory"
                )
            source = resolve_target(target, cwd)

            if inspect and not self.inspect(target, source):
                log.info("Inspection declined for %s", source)
                continue

            if is_within(source, self.root):
                self.echo(f"{source} is already in the graveyard.")
                if self.confirm.ask("Permanently unlink it?"):
                    try:
                        _remove_entry(source)
                    except OSError as exc:
                        raise BuryError(f"Couldn't unlink {source}: {exc}") from exc
                    log.info("Permanently deleted %s", source)
                else:
                    self.echo(f"Skipping {source}")
                continue

            if is_within(self.root, source):
                raise BuryError(f"Cannot bury {source}: it contains the graveyard {self.root}")

            dest = join_absolute(self.root, source)
            if symlink_exists(dest):
                dest = rename_grave(dest)
            check_representable(source)
            check_representable(dest)

            try:
                moved = self._relocate(source, dest)
            except RelocationError as exc:
                if exc.partial:
                    self._cleanup_partial(dest)
                elif exc.stage == "remove":
                    # Copy is complete but the source is partly gone: the
                    # graveyard copy may be the only one left.
                    self.record.append(source, dest)
                    raise BuryError(
                        f"Failed to bury {source}: {exc}; the copy at {dest} is recorded"
                    ) from exc
                raise BuryError(f"Failed to bury {source}: {exc}") from exc
            except UserAbort:
                self._cleanup_partial(dest)
                raise

            if not moved:
                log.info("%s was deleted instead of buried; not recorded", source)
                continue

            self.record.append(source, dest)
            log.info("Buried %s at %s", source, dest)
            buried.append(dest)

        return buried

    def _cleanup_partial(self, dest: Path) -> None:
        """Best-effort removal of a half-copied holding path."""
        if not symlink_exists(dest):
            return
        try:
            _remove_entry(dest)
        except OSError as exc:
            log.warning("Could not clean up partial copy at %s: %s", dest, exc)

    def inspect(self, target: str | os.PathLike[str], source: Path) -> bool:
        """Describe *source* and ask whether to bury it."""
        if source.is_dir() and not source.is_symlink():
            total = 0
            for dirpath, dirnames, filenames in os.walk(source):
                for name in dirnames + filenames:
                    try:
                        total += os.lstat(os.path.join(dirpath, name)).st_size
                    except OSError:
                        continue
            self.echo(f"{target}: directory, {humanize_bytes(total)} including:")
            for child in sorted(source.iterdir())[: self.inspect_files]:
                self.echo(str(child))
        else:
            size = source.lstat().st_size
            self.echo(f"{target}: file, {humanize_bytes(size)}")
            if source.is_file():
                try:
                    with open(source, errors="replace") as fh:
                        for _, line in zip(range(self.inspect_lines), fh):
                            self.echo(f"> {line.rstrip()}")
                except OSError:
                    self.echo(f"Error reading {source}")
        return self.confirm.ask(f"Send {target} to the graveyard?")

    # ------------------------------------------------------------------
    # Seance
    # ------------------------------------------------------------------

    def seance_path(self, cwd: Path | None = None) -> Path:
        """Where the entries buried from *cwd* live inside the graveyard."""
        cwd = Path(cwd) if cwd else Path.cwd()
        return join_absolute(self.root, os.path.realpath(cwd))

    def seance(self, cwd: Path | None = None) -> list[Record]:
        """List records buried from under *cwd*, without changing anything."""
        records = list(self.record.seance(self.seance_path(cwd)))
        for record in records:
            self.echo(f"{record.timestamp}\t{record.holding}")
        return records

    # ------------------------------------------------------------------
    # Unbury
    # ------------------------------------------------------------------

    def unbury(
        self,
        names: Sequence[str | os.PathLike[str]] = (),
        seance: bool = False,
        cwd: Path | None = None,
    ) -> list[Path]:
        """Return graves to their original location.

        Candidates are the holding paths in *names*, every grave under the
        seance path when *seance* is set, and otherwise the most recently
        buried grave that still exists. A record is removed once its grave
        has left the graveyard (returned, deleted at the user's request or
        already gone). Graves left in place by a failure or an abort keep
        their record.
        """
        cwd = Path(cwd) if cwd else Path.cwd()
        graves = {Path(os.path.abspath(cwd / name)) for name in names}
        if seance:
            try:
                graves.update(r.holding for r in self.record.seance(self.seance_path(cwd)))
            except RecordNotFoundError:
                log.debug("No record at %s; seance found nothing", self.record.path)
        if not graves:
            graves.add(self.record.find_most_recent_existing().holding)

        seen: list[Path] = []
        settled: list[Path] = []
        restored: list[Path] = []
        failures: list[RelocationError] = []
        try:
            for record in self.record.all_matching(lambda holding: holding in graves):
                seen.append(record.holding)
                try:
                    dest = self._exhume(record)
                except RelocationError as exc:
                    failures.append(exc)
                    continue
                finally:
                    if not symlink_exists(record.holding):
                        settled.append(record.holding)
                if dest is not None:
                    restored.append(dest)
        finally:
            self.record.forget(settled)

        for grave in sorted(graves.difference(seen)):
            log.warning("No record of %s", grave)

        if failures:
            raise UnburyError(failures)
        return restored

    def _exhume(self, record: Record) -> Path | None:
        """Move one grave back. Returns where it went, or None if it was deleted."""
        dest = record.original
        if symlink_exists(dest):
            dest = rename_grave(dest)
        try:
            moved = self._relocate(record.holding, dest)
        except RelocationError as exc:
            if exc.partial:
                self._cleanup_partial(dest)
            log.error("Unbury of %s failed: %s", record.holding, exc)
            self.echo(f"Unbury failed: couldn't move {record.holding} to {dest}: {exc}")
            raise
        except UserAbort:
            self._cleanup_partial(dest)
            raise

        if not moved:
            self.echo(f"Permanently deleted {record.holding} instead of returning it")
            return None
        self.echo(f"Returned {record.holding} to {dest}")
        return dest

    # ------------------------------------------------------------------
    # Decompose
    # ------------------------------------------------------------------

    def decompose(self) -> bool:
        """Delete the whole graveyard, record included, after asking."""
        if not self.confirm.ask("Really unlink the entire graveyard?"):
            return False
        if self.root.exists():
            shutil.rmtree(self.root)
            log.info("Decomposed graveyard at %s", self.root)
        return True
