"""Tests for rip.graveyard.record."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from rip.graveyard.record import (
    RECORD,
    RECORD_HEADER,
    EmptyGraveyardError,
    Record,
    RecordFormatError,
    RecordNotFoundError,
    RecordStore,
    RecordUpdateError,
    parse_line,
)


@pytest.fixture
def graveyard(tmp_path: Path) -> Path:
    root = tmp_path / "graveyard"
    root.mkdir()
    return root


@pytest.fixture
def store(graveyard: Path) -> RecordStore:
    return RecordStore(graveyard)


def _bury_file(graveyard: Path, rel: str) -> Path:
    """Create a file in the graveyard as if it had been buried."""
    holding = graveyard / rel
    holding.parent.mkdir(parents=True, exist_ok=True)
    holding.write_text(rel)
    return holding


class TestParseLine:
    def test_three_fields(self) -> None:
        record = parse_line("2026-01-01T00:00:00+00:00\t/a/b\t/g/a/b")
        assert record == Record("2026-01-01T00:00:00+00:00", Path("/a/b"), Path("/g/a/b"))

    def test_extra_fields_ignored(self) -> None:
        record = parse_line("t\t/a\t/g/a\textra")
        assert record.holding == Path("/g/a")

    @pytest.mark.parametrize("line", ["", "just-one", "two\tfields"])
    def test_too_few_fields_is_fatal(self, line: str) -> None:
        with pytest.raises(RecordFormatError, match="expected 3 tab-separated fields"):
            parse_line(line, Path("/g/.record"), 4)

    def test_error_names_location(self) -> None:
        with pytest.raises(RecordFormatError, match=r"/g/\.record:4"):
            parse_line("bad", Path("/g/.record"), 4)


class TestAppend:
    def test_creates_file_with_header(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/tmp/x/a.txt"), graveyard / "tmp/x/a.txt")
        lines = (graveyard / RECORD).read_text().split("\n")
        assert lines[0] == RECORD_HEADER
        assert lines[1].endswith(f"\t/tmp/x/a.txt\t{graveyard}/tmp/x/a.txt")
        assert lines[2] == ""

    def test_timestamp_is_iso_with_offset(self, store: RecordStore, graveyard: Path) -> None:
        record = store.append(Path("/a"), graveyard / "a")
        parsed = datetime.fromisoformat(record.timestamp)
        assert parsed.utcoffset() is not None

    def test_appends_in_order(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/a"), graveyard / "a")
        store.append(Path("/b"), graveyard / "b")
        assert [r.original for r in store.records()] == [Path("/a"), Path("/b")]
        assert (graveyard / RECORD).read_text().count(RECORD_HEADER) == 1

    def test_rejects_tab_in_path(self, store: RecordStore, graveyard: Path) -> None:
        with pytest.raises(RecordFormatError, match="tabs or newlines"):
            store.append(Path("/a\tb"), graveyard / "a\tb")
        assert not store.path.exists()

    def test_unwritable_record(self, tmp_path: Path) -> None:
        # Parent is a regular file, so the record can never be created
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = RecordStore(blocker)
        with pytest.raises(RecordUpdateError, match="Failed to write record"):
            store.append(Path("/a"), blocker / "a")

    def test_non_utf8_path_round_trips(self, store: RecordStore, graveyard: Path) -> None:
        weird = Path("/tmp/caf\udce9")
        store.append(weird, graveyard / "tmp" / "caf\udce9")
        assert store.records()[0].original == weird


class TestAllMatching:
    def test_missing_record(self, store: RecordStore) -> None:
        with pytest.raises(RecordNotFoundError, match="Failed to read record"):
            list(store.all_matching())

    def test_filters_by_holding_path(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/a"), graveyard / "a")
        store.append(Path("/b"), graveyard / "b")
        matched = list(store.all_matching(lambda holding: holding.name == "b"))
        assert [r.original for r in matched] == [Path("/b")]

    def test_malformed_line_is_fatal(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/a"), graveyard / "a")
        with open(store.path, "a") as fh:
            fh.write("garbage line\n")
        with pytest.raises(RecordFormatError):
            list(store.all_matching())

    def test_headerless_legacy_file(self, store: RecordStore, graveyard: Path) -> None:
        store.path.write_text(f"t\t/a\t{graveyard}/a\n")
        assert [r.original for r in store.records()] == [Path("/a")]

    def test_seance_is_component_wise(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/home/u/x"), graveyard / "home/u/x")
        store.append(Path("/home/u2/y"), graveyard / "home/u2/y")
        store.append(Path("/home/u/sub/z"), graveyard / "home/u/sub/z")
        found = [r.original for r in store.seance(graveyard / "home/u")]
        assert found == [Path("/home/u/x"), Path("/home/u/sub/z")]


class TestCompact:
    def test_keeps_header_and_other_lines(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/a"), graveyard / "a")
        store.append(Path("/b"), graveyard / "b")
        removed = store.compact(lambda r: r.original == Path("/a"))
        assert removed == 1
        text = store.path.read_text()
        assert text.startswith(RECORD_HEADER + "\n")
        assert text.endswith("\n")
        assert [r.original for r in store.records()] == [Path("/b")]

    def test_idempotent(self, store: RecordStore, graveyard: Path) -> None:
        for name in ("a", "b", "c"):
            store.append(Path(f"/{name}"), graveyard / name)
        graves = [graveyard / "a", graveyard / "c"]

        assert store.forget(graves) == 2
        first = store.path.read_bytes()
        assert store.forget(graves) == 0
        assert store.path.read_bytes() == first

    def test_remove_everything_leaves_header(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/a"), graveyard / "a")
        store.compact(lambda r: True)
        assert store.path.read_text() == RECORD_HEADER + "\n"
        assert store.records() == []

    def test_missing_record_is_noop(self, store: RecordStore) -> None:
        assert store.compact(lambda r: True) == 0
        assert not store.path.exists()

    def test_malformed_line_aborts_without_rewriting(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/a"), graveyard / "a")
        with open(store.path, "a") as fh:
            fh.write("broken\n")
        before = store.path.read_bytes()
        with pytest.raises(RecordFormatError):
            store.compact(lambda r: True)
        assert store.path.read_bytes() == before

    def test_no_temp_files_left_behind(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/a"), graveyard / "a")
        store.compact(lambda r: True)
        assert sorted(p.name for p in graveyard.iterdir()) == [RECORD]


class TestFindMostRecentExisting:
    def test_returns_newest(self, store: RecordStore, graveyard: Path) -> None:
        for name in ("a", "b"):
            store.append(Path(f"/{name}"), _bury_file(graveyard, name))
        assert store.find_most_recent_existing().original == Path("/b")

    def test_self_heals_stale_records(self, store: RecordStore, graveyard: Path) -> None:
        for name in ("a", "b", "c"):
            store.append(Path(f"/{name}"), _bury_file(graveyard, name))
        (graveyard / "c").unlink()  # removed out-of-band

        found = store.find_most_recent_existing()

        assert found.original == Path("/b")
        assert [r.original for r in store.records()] == [Path("/a"), Path("/b")]

    def test_stale_records_older_than_match_are_kept(self, store: RecordStore, graveyard: Path) -> None:
        for name in ("a", "b"):
            store.append(Path(f"/{name}"), _bury_file(graveyard, name))
        (graveyard / "a").unlink()

        assert store.find_most_recent_existing().original == Path("/b")
        assert len(store.records()) == 2

    def test_all_stale(self, store: RecordStore, graveyard: Path) -> None:
        store.append(Path("/a"), graveyard / "a")
        with pytest.raises(EmptyGraveyardError, match="No files in graveyard"):
            store.find_most_recent_existing()
        assert store.records() == []

    def test_missing_record(self, store: RecordStore) -> None:
        with pytest.raises(EmptyGraveyardError):
            store.find_most_recent_existing()
