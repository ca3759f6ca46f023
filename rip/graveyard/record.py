"""Append-only record of buried entries.

One line per buried entry in ``<graveyard>/.record``::

    <timestamp>\\t<original path>\\t<holding path>

The file may start with a single ``#`` header line, which every rewrite
keeps verbatim. Removing entries rewrites the whole file through a
temporary sibling that is ``os.replace``-d into place.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator

from rip.paths import is_within, symlink_exists

log = logging.getLogger(__name__)

RECORD = ".record"
RECORD_HEADER = "# rip graveyard record: timestamp, original path, graveyard path"

# Paths round-trip even when they are not valid UTF-8
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class RecordFormatError(ValueError):
    """Raised on a record line that does not have three tab-separated fields."""


class RecordNotFoundError(FileNotFoundError):
    """Raised when the record file does not exist."""


class EmptyGraveyardError(FileNotFoundError):
    """Raised when no recorded entry still exists in the graveyard."""


class RecordUpdateError(OSError):
    """Raised when the record could not be written.

    Files may already have moved; the record may be stale.
    """


@dataclass(frozen=True)
class Record:
    """One buried entry."""

    timestamp: str
    original: Path
    holding: Path

    def to_line(self) -> str:
        return f"{self.timestamp}\t{self.original}\t{self.holding}"


def parse_line(line: str, record_path: Path | None = None, lineno: int | None = None) -> Record:
    """Parse one record line (without its newline) into a :class:`Record`."""
    fields = line.split("\t")
    if len(fields) < 3:
        where = f"{record_path}:{lineno}" if record_path else "record"
        raise RecordFormatError(
            f"Bad record format at {where}: expected 3 tab-separated fields, "
            f"got {len(fields)}: {line!r}"
        )
    return Record(timestamp=fields[0], original=Path(fields[1]), holding=Path(fields[2]))


def check_representable(path: str | os.PathLike[str]) -> None:
    """Raise :class:`RecordFormatError` if *path* cannot be stored in a record line."""
    text = os.fspath(path)
    if "\t" in text or "\n" in text or "\r" in text:
        raise RecordFormatError(
            f"Cannot record {text!r}: paths containing tabs or newlines are not supported"
        )


class RecordStore:
    """The record file of one graveyard.

    Parameters
    ----------
    graveyard:
        Graveyard root. The record lives at ``<graveyard>/.record``.
    """

    def __init__(self, graveyard: Path) -> None:
        self.path = Path(graveyard) / RECORD

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read_lines(self) -> tuple[str | None, list[str]]:
        """Return (header, record lines) for the whole file."""
        try:
            with open(self.path, encoding=_ENCODING, errors=_ERRORS, newline="\n") as fh:
                text = fh.read()
        except FileNotFoundError:
            raise RecordNotFoundError(f"Failed to read record at {self.path}") from None
        # str.splitlines() would also split on form feeds and friends
        lines = text.split("\n")
        if lines[-1] == "":
            lines.pop()
        if lines and lines[0].startswith("#"):
            return lines[0], lines[1:]
        return None, lines

    def all_matching(
        self,
        predicate: Callable[[Path], bool] | None = None,
    ) -> Iterator[Record]:
        """Stream records whose holding path satisfies *predicate*.

        Malformed lines raise :class:`RecordFormatError`.
        """
        try:
            fh = open(self.path, encoding=_ENCODING, errors=_ERRORS, newline="\n")
        except FileNotFoundError:
            raise RecordNotFoundError(f"Failed to read record at {self.path}") from None
        with fh:
            for lineno, raw in enumerate(fh, start=1):
                line = raw.rstrip("\n")
                if lineno == 1 and line.startswith("#"):
                    continue
                record = parse_line(line, self.path, lineno)
                if predicate is None or predicate(record.holding):
                    yield record

    def records(self) -> list[Record]:
        return list(self.all_matching())

    def seance(self, prefix: Path) -> Iterator[Record]:
        """Records whose holding path lies under *prefix*."""
        return self.all_matching(lambda holding: is_within(holding, prefix))

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(self, original: Path, holding: Path) -> Record:
        """Append a record for *original* now resting at *holding*."""
        check_representable(original)
        check_representable(holding)
        record = Record(
            timestamp=datetime.now().astimezone().isoformat(),
            original=Path(original),
            holding=Path(holding),
        )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fresh = not self.path.exists() or self.path.stat().st_size == 0
            with open(self.path, "a", encoding=_ENCODING, errors=_ERRORS, newline="\n") as fh:
                if fresh:
                    fh.write(f"{RECORD_HEADER}\n")
                fh.write(f"{record.to_line()}\n")
        except OSError as exc:
            raise RecordUpdateError(f"Failed to write record at {self.path}: {exc}") from exc
        log.debug("Recorded %s -> %s", original, holding)
        return record

    def compact(self, remove_if: Callable[[Record], bool]) -> int:
        """Drop every record for which *remove_if* is true.

        Returns the number of removed records. Nothing is written when no
        record matches or the record file does not exist.
        """
        try:
            header, lines = self._read_lines()
        except RecordNotFoundError:
            return 0

        kept: list[str] = []
        removed = 0
        for lineno, line in enumerate(lines, start=2 if header is not None else 1):
            if remove_if(parse_line(line, self.path, lineno)):
                removed += 1
            else:
                kept.append(line)
        if not removed:
            return 0

        content = "".join(f"{line}\n" for line in ([header] if header is not None else []) + kept)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f"{RECORD}.", suffix=".tmp", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding=_ENCODING, errors=_ERRORS, newline="\n") as fh:
                fh.write(content)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            raise RecordUpdateError(
                f"Failed to remove entries from record at {self.path}: {exc}"
            ) from exc

        log.info("Removed %d record(s) from %s", removed, self.path)
        return removed

    def forget(self, holding_paths: Iterable[Path]) -> int:
        """Remove the records of the given holding paths."""
        graves = {Path(p) for p in holding_paths}
        if not graves:
            return 0
        return self.compact(lambda record: record.holding in graves)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_most_recent_existing(self) -> Record:
        """Return the newest record whose holding path still exists.

        Records skipped on the way because their holding path vanished are
        removed from the file.
        """
        try:
            _, lines = self._read_lines()
        except RecordNotFoundError:
            raise EmptyGraveyardError("No files in graveyard") from None

        stale: list[Path] = []
        found: Record | None = None
        for line in reversed(lines):
            record = parse_line(line, self.path)
            if symlink_exists(record.holding):
                found = record
                break
            stale.append(record.holding)

        if stale:
            log.info("Pruning %d stale record(s) whose graves are gone", len(stale))
            self.forget(stale)
        if found is None:
            raise EmptyGraveyardError("No files in graveyard")
        return found
