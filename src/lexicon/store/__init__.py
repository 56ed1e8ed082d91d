"""Lexicon store: entries table, migrations, auxiliary Strong's index."""

from lexicon.store.db import EntryStore, Persister, StoreClosedError, open_connection
from lexicon.store.migrations import create_schema, migrate
from lexicon.store.models import (
    CountFilter,
    EntryCorrection,
    EntryStatus,
    LexiconEntry,
    MaintenanceResult,
    RebuildIdsOptions,
    StoreStats,
    ValidationUpdate,
)
from lexicon.store.strongs import StrongsIndex

__all__ = [
    "CountFilter",
    "EntryCorrection",
    "EntryStatus",
    "EntryStore",
    "LexiconEntry",
    "MaintenanceResult",
    "Persister",
    "RebuildIdsOptions",
    "StoreClosedError",
    "StoreStats",
    "StrongsIndex",
    "ValidationUpdate",
    "create_schema",
    "migrate",
    "open_connection",
]
