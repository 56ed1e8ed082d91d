"""Schema management and migrations for the lexicon store.

This module handles schema creation, lazy column migrations for images
written by older versions, integrity checks and JSON import/export.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from lexicon.store.models import LexiconEntry

if TYPE_CHECKING:
    from lexicon.store.db import EntryStore

logger = logging.getLogger(__name__)

# Columns added after the first release, with the DDL used to add them.
# Order matters: it is the order columns are appended to old images.
REQUIRED_COLUMNS: dict[str, str] = {
    "isRoot": "INTEGER DEFAULT 0",
    "strongsNumbers": "TEXT DEFAULT ''",
    "status": "TEXT DEFAULT 'unchecked'",
    "validationIssue": "TEXT",
    "needsRescan": "INTEGER DEFAULT 0",
}


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the entries table and its indexes.

    This function is idempotent - safe to call multiple times.
    Uses IF NOT EXISTS for all CREATE statements.

    Args:
        conn: SQLite connection (caller manages transaction)
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS entries (
            id TEXT PRIMARY KEY,
            hebrewWord TEXT,
            hebrewConsonantal TEXT,
            transliteration TEXT,
            partOfSpeech TEXT,
            definition TEXT,
            root TEXT,
            isRoot INTEGER DEFAULT 0,
            strongsNumbers TEXT DEFAULT '',
            sourcePage TEXT,
            sourceUrl TEXT,
            dateAdded INTEGER,
            status TEXT DEFAULT 'unchecked',
            validationIssue TEXT,
            needsRescan INTEGER DEFAULT 0
        )
    """)

    _create_indexes(conn)


def _create_indexes(conn: sqlite3.Connection) -> None:
    """Create the headword lookup indexes."""
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_hebrew
        ON entries(hebrewWord)
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_consonantal
        ON entries(hebrewConsonantal)
    """)


def table_columns(conn: sqlite3.Connection, table: str = "entries") -> list[str]:
    """Column names of a table, in declaration order ([] if it does not exist)."""
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return [row[1] for row in cursor.fetchall()]


def migrate(conn: sqlite3.Connection) -> list[str]:
    """Bring an image up to the current column set.

    Adds each missing column from REQUIRED_COLUMNS with its declared
    default. Creates the table when the image has none. Existing data
    is never touched, so running on a current image is a no-op.

    Returns:
        Names of the columns that were added. The caller persists the
        image once if (and only if) this list is non-empty.
    """
    existing = table_columns(conn)
    if not existing:
        logger.info("Image has no entries table, creating schema")
        create_schema(conn)
        return []

    added: list[str] = []
    for column, ddl in REQUIRED_COLUMNS.items():
        if column in existing:
            continue
        conn.execute(f"ALTER TABLE entries ADD COLUMN {column} {ddl}")
        added.append(column)

    if added:
        # Old images may predate the indexes too
        _create_indexes(conn)
        logger.info("Migrated entries table: added %s", ", ".join(added))
    return added


# =============================================================================
# Integrity
# =============================================================================


def check_integrity(conn: sqlite3.Connection) -> tuple[bool, list[str]]:
    """Check store integrity.

    Returns:
        Tuple of (is_ok, list of error messages)
    """
    errors: list[str] = []

    cursor = conn.execute("PRAGMA integrity_check")
    result = cursor.fetchone()
    if result[0] != "ok":
        errors.append(f"Integrity check failed: {result[0]}")

    missing = [c for c in REQUIRED_COLUMNS if c not in table_columns(conn)]
    if missing:
        errors.append(f"Missing columns: {', '.join(missing)}")
        return False, errors

    cursor = conn.execute("""
        SELECT id, COUNT(*) FROM entries GROUP BY id HAVING COUNT(*) > 1
    """)
    for entry_id, count in cursor.fetchall():
        errors.append(f"Duplicate id {entry_id!r} ({count} rows)")

    cursor = conn.execute("""
        SELECT id FROM entries
        WHERE validationIssue IS NOT NULL AND validationIssue != ''
          AND (status IS NULL OR status != 'invalid')
    """)
    for (entry_id,) in cursor.fetchall():
        errors.append(f"Entry {entry_id!r} keeps an issue but is not invalid")

    cursor = conn.execute("""
        SELECT id FROM entries
        WHERE hebrewWord IS NULL OR hebrewWord = ''
           OR definition IS NULL OR definition = ''
    """)
    for (entry_id,) in cursor.fetchall():
        errors.append(f"Entry {entry_id!r} lacks a headword or definition")

    return len(errors) == 0, errors


# =============================================================================
# JSON import/export
# =============================================================================


def export_to_json(store: EntryStore, output_path: Path) -> int:
    """Export every entry to a JSON file (camelCase field names).

    Args:
        store: Open entry store
        output_path: Path for the output JSON file

    Returns:
        Number of entries exported
    """
    entries = [
        entry.model_dump(by_alias=True)
        for entry in store.all(sort_by="id", sort_dir="asc")
    ]

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(entries, f, indent=2, ensure_ascii=False)

    return len(entries)


def import_from_json(store: EntryStore, json_path: Path) -> int:
    """Import entries from a JSON file written by export_to_json.

    Items failing validation are logged and skipped; the rest are
    upserted in one unit.

    Returns:
        Number of entries imported
    """
    if not json_path.exists():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    with open(json_path, encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON file must contain a list of entries")

    entries: list[LexiconEntry] = []
    for item in data:
        try:
            entries.append(LexiconEntry.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping invalid JSON entry %r: %s", item.get("id") if isinstance(item, dict) else item, e)

    if not entries:
        return 0
    if not store.add_or_replace(entries):
        raise RuntimeError(f"Import from {json_path} failed, no entries were written")
    return len(entries)
