"""Graveyard storage engine: record store, relocation and sessions.

Buried entries live under the graveyard root at a path mirroring their
original absolute path; ``<root>/.record`` maps them back.
"""

from rip.graveyard.record import (
    RECORD,
    RECORD_HEADER,
    EmptyGraveyardError,
    Record,
    RecordFormatError,
    RecordNotFoundError,
    RecordStore,
    RecordUpdateError,
)
from rip.graveyard.relocation import (
    BIG_FILE_THRESHOLD,
    EntryKind,
    RelocationError,
    copy_entry,
    move_dir,
    relocate,
)
from rip.graveyard.session import (
    BuryError,
    Graveyard,
    TargetNotFoundError,
    UnburyError,
)

__all__ = [
    "BIG_FILE_THRESHOLD",
    "BuryError",
    "EmptyGraveyardError",
    "EntryKind",
    "Graveyard",
    "RECORD",
    "RECORD_HEADER",
    "Record",
    "RecordFormatError",
    "RecordNotFoundError",
    "RecordStore",
    "RecordUpdateError",
    "RelocationError",
    "TargetNotFoundError",
    "UnburyError",
    "copy_entry",
    "move_dir",
    "relocate",
]
