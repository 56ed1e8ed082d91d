"""SQLite operations for the lexicon store.

The store is an in-memory SQLite database deserialized from a snapshot
image. Every mutating operation runs in one explicit transaction and,
on commit, hands the full serialized image to the injected persister.
There is no write-ahead log: durability is whole-image snapshotting.
"""

import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from lexicon.config import PageNamingConfig
from lexicon.store.hebrew import (
    consonantal_form,
    hebrew_collate,
    hebrew_sort_key,
    root_exceeds_word,
    split_trailing_numeral,
    starts_with_numeral,
)
from lexicon.store.migrations import create_schema
from lexicon.store.models import (
    ENTRY_STATUSES,
    CountFilter,
    EntryCorrection,
    LexiconEntry,
    MaintenanceResult,
    RebuildIdsOptions,
    StoreStats,
    ValidationUpdate,
    now_millis,
)
from lexicon.store.pages import (
    id_number,
    page_candidates,
    page_number_from_filename,
    page_number_from_id,
)

logger = logging.getLogger(__name__)

Persister = Callable[[bytes], None]

COLUMNS: tuple[str, ...] = (
    "id",
    "hebrewWord",
    "hebrewConsonantal",
    "transliteration",
    "partOfSpeech",
    "definition",
    "root",
    "isRoot",
    "strongsNumbers",
    "sourcePage",
    "sourceUrl",
    "dateAdded",
    "status",
    "validationIssue",
    "needsRescan",
)

# Field name (snake_case or column alias) -> column, for partial updates
_UPDATABLE: dict[str, str] = {
    key: field.alias or name
    for name, field in LexiconEntry.model_fields.items()
    if name not in ("id", "date_added")
    for key in (name, field.alias or name)
}

_BOOL_COLUMNS = {"isRoot", "needsRescan"}

# Fields a correction may rewrite, in the order they are applied
_CORRECTABLE = (
    "hebrew_word",
    "hebrew_consonantal",
    "root",
    "definition",
    "part_of_speech",
    "transliteration",
)

_INSERTION_ORDER = "dateAdded {dir}, rowid {dir}"
_ORDER_CLAUSES: dict[str, str] = {
    "id": "id_number(id) {dir}, id {dir}",
    "hebrew": "hebrewWord COLLATE HEBREW {dir}",
    "consonantal": "hebrewConsonantal COLLATE HEBREW {dir}, hebrewWord COLLATE HEBREW {dir}",
    "source": "sourcePage {dir}, id_number(id) {dir}",
    "date": _INSERTION_ORDER,
    "default": _INSERTION_ORDER,
}


class StoreClosedError(RuntimeError):
    """Raised when an operation is attempted on a closed store."""


def _order_by(sort_by: str | None, sort_dir: str | None) -> str:
    """ORDER BY clause for a sort key; unknown keys fall back to newest first."""
    clause = _ORDER_CLAUSES.get(sort_by or "default")
    if clause is None:
        logger.debug("Unknown sort key %r, using insertion time", sort_by)
        return _INSERTION_ORDER.format(dir="DESC")
    if sort_dir in ("asc", "desc"):
        direction = sort_dir.upper()
    else:
        direction = "DESC" if clause is _INSERTION_ORDER else "ASC"
    return clause.format(dir=direction)


def _paginate(limit: int | None, offset: int | None) -> tuple[str, tuple]:
    if limit is None and not offset:
        return "", ()
    return " LIMIT ? OFFSET ?", (limit if limit is not None else -1, offset or 0)


def _row_to_entry(row: sqlite3.Row) -> LexiconEntry | None:
    """Decode a row; rows failing required-field checks are logged and dropped."""
    try:
        return LexiconEntry.model_validate(dict(row))
    except ValidationError as e:
        logger.warning("Skipping malformed row %r: %s", row["id"], e.errors()[0]["msg"])
        return None


def _decode(rows: Iterable[sqlite3.Row]) -> list[LexiconEntry]:
    return [entry for entry in map(_row_to_entry, rows) if entry is not None]


def open_connection(image: bytes | None = None) -> sqlite3.Connection:
    """Open an in-memory connection, optionally loaded from a snapshot image.

    Autocommit mode is used so transactions are always explicit. The
    Hebrew collation and the helper SQL functions are registered here.
    """
    conn = sqlite3.connect(":memory:", isolation_level=None)
    if image is not None:
        conn.deserialize(image)
    conn.row_factory = sqlite3.Row
    conn.create_collation("HEBREW", hebrew_collate)
    conn.create_function("id_number", 1, id_number, deterministic=True)
    conn.create_function("page_number", 1, page_number_from_id, deterministic=True)
    return conn


class EntryStore:
    """The only component that reads or writes lexicon rows.

    Args:
        conn: Connection from open_connection()
        persister: Called with the full image after every committed mutation
        naming: Page filename convention used by resolve_page()
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        persister: Persister | None = None,
        naming: PageNamingConfig | None = None,
    ):
        self._conn: sqlite3.Connection | None = conn
        self._persister = persister
        self.naming = naming or PageNamingConfig()

    @classmethod
    def from_image(
        cls,
        image: bytes,
        persister: Persister | None = None,
        naming: PageNamingConfig | None = None,
    ) -> "EntryStore":
        """Open a store over an existing snapshot image."""
        return cls(open_connection(image), persister, naming)

    @classmethod
    def create_empty(
        cls,
        persister: Persister | None = None,
        naming: PageNamingConfig | None = None,
    ) -> "EntryStore":
        """Create a fresh store with the initial schema (nothing is persisted)."""
        conn = open_connection()
        create_schema(conn)
        return cls(conn, persister, naming)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreClosedError("Entry store is not initialized")
        return self._conn

    def set_persister(self, persister: Persister | None) -> None:
        self._persister = persister

    def export_bytes(self) -> bytes:
        """Full SQLite image of the store."""
        return self.conn.serialize()

    def persist(self) -> None:
        """Hand the current image to the persister (if any)."""
        if self._persister is not None:
            self._persister(self.export_bytes())

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Explicit BEGIN/COMMIT with ROLLBACK on any error."""
        conn = self.conn
        conn.execute("BEGIN")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def _query(self, where: str = "", params: Sequence[Any] = (),
               sort_by: str | None = None, sort_dir: str | None = None,
               limit: int | None = None, offset: int | None = None) -> list[LexiconEntry]:
        sql = "SELECT * FROM entries"
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {_order_by(sort_by, sort_dir)}"
        page_sql, page_params = _paginate(limit, offset)
        try:
            cursor = self.conn.execute(sql + page_sql, (*params, *page_params))
            return _decode(cursor.fetchall())
        except sqlite3.Error as e:
            logger.error("Query failed (%s): %s", where or "all", e)
            return []

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def add_or_replace(self, entries: Iterable[LexiconEntry | dict]) -> bool:
        """Upsert entries by id in one unit.

        dateAdded is stamped on new rows that lack one and kept on
        replaced rows. Any failure rolls back the whole unit.

        Returns:
            True if the unit committed (and was persisted)
        """
        columns = ", ".join(COLUMNS)
        placeholders = ", ".join(f":{c}" for c in COLUMNS)
        assignments = ", ".join(
            f"{c} = excluded.{c}" for c in COLUMNS if c not in ("id", "dateAdded")
        )
        sql = f"""
            INSERT INTO entries ({columns}) VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET {assignments},
                dateAdded = COALESCE(entries.dateAdded, excluded.dateAdded)
        """
        try:
            rows = []
            now = now_millis()
            for item in entries:
                entry = item if isinstance(item, LexiconEntry) else LexiconEntry.model_validate(item)
                row = entry.to_row()
                if row["dateAdded"] is None:
                    row["dateAdded"] = now
                rows.append(row)
            if not rows:
                return True
            with self.transaction() as conn:
                conn.executemany(sql, rows)
        except (sqlite3.Error, ValidationError) as e:
            logger.error("Failed to add entries: %s", e)
            return False

        self.persist()
        return True

    def delete(self, ids: Sequence[str]) -> int:
        """Delete entries by id. Returns the number removed."""
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        try:
            with self.transaction() as conn:
                removed = conn.execute(
                    f"DELETE FROM entries WHERE id IN ({placeholders})", tuple(ids)
                ).rowcount
        except sqlite3.Error as e:
            logger.error("Failed to delete entries: %s", e)
            return 0
        if removed:
            self.persist()
        return removed

    def delete_by_page(self, page: str) -> int:
        """Delete every entry extracted from a page. Returns the number removed."""
        try:
            with self.transaction() as conn:
                removed = conn.execute(
                    "DELETE FROM entries WHERE sourcePage = ?", (page,)
                ).rowcount
        except sqlite3.Error as e:
            logger.error("Failed to delete page %s: %s", page, e)
            return 0
        if removed:
            self.persist()
        return removed

    def update(self, entry_id: str, fields: dict[str, Any]) -> bool:
        """Update the recognized fields of one entry.

        Keys may be attribute names or column names. Setting a status
        other than 'invalid' also clears validationIssue.

        Returns:
            False if no field is recognized, the entry is missing, or
            the update fails
        """
        changes: dict[str, Any] = {}
        for key, value in fields.items():
            column = _UPDATABLE.get(key)
            if column is None:
                continue
            changes[column] = int(bool(value)) if column in _BOOL_COLUMNS else value

        if not changes:
            return False
        status = changes.get("status")
        if status is not None and status not in ENTRY_STATUSES:
            logger.warning("Rejecting unknown status %r for %s", status, entry_id)
            return False
        if status is not None and status != "invalid":
            changes["validationIssue"] = None

        assignments = ", ".join(f"{column} = ?" for column in changes)
        try:
            with self.transaction() as conn:
                updated = conn.execute(
                    f"UPDATE entries SET {assignments} WHERE id = ?",
                    (*changes.values(), entry_id),
                ).rowcount
        except sqlite3.Error as e:
            logger.error("Failed to update %s: %s", entry_id, e)
            return False

        if not updated:
            return False
        self.persist()
        return True

    def set_validation_status(self, entry_id: str, status: str, issue: str | None = None) -> bool:
        try:
            update = ValidationUpdate(id=entry_id, status=status, issue=issue)
        except ValidationError as e:
            logger.warning("Invalid validation update for %s: %s", entry_id, e)
            return False
        return self.set_validation_statuses([update])

    def set_validation_statuses(self, updates: Sequence[ValidationUpdate | dict]) -> bool:
        """Apply many status changes as one unit with a single persist.

        A failure on any row rolls back every change in the list.
        """
        if not updates:
            return True
        try:
            params = []
            for item in updates:
                update = item if isinstance(item, ValidationUpdate) else ValidationUpdate.model_validate(item)
                issue = update.issue if update.status == "invalid" else None
                params.append((update.status, issue, update.id))
            with self.transaction() as conn:
                conn.executemany(
                    "UPDATE entries SET status = ?, validationIssue = ? WHERE id = ?",
                    params,
                )
        except (sqlite3.Error, ValidationError) as e:
            logger.error("Failed to apply %d status updates: %s", len(updates), e)
            return False

        self.persist()
        return True

    def apply_corrections(self, corrections: Sequence[EntryCorrection | dict]) -> int:
        """Apply field corrections (plus status) in one unit with a single persist.

        Each correction writes its supplied fields and status, and clears
        needsRescan. A bare validationIssue without a status marks the
        entry invalid.

        Returns:
            Number of entries updated, or -1 if the unit was rolled back
        """
        if not corrections:
            return 0
        updated = 0
        try:
            with self.transaction() as conn:
                for item in corrections:
                    correction = (
                        item if isinstance(item, EntryCorrection)
                        else EntryCorrection.model_validate(item)
                    )
                    changes: dict[str, Any] = {}
                    for name in _CORRECTABLE:
                        value = getattr(correction, name)
                        if value is not None:
                            changes[_UPDATABLE[name]] = value

                    status = correction.status
                    if status is None and correction.validation_issue:
                        status = "invalid"
                    if status is not None:
                        changes["status"] = status
                        changes["validationIssue"] = (
                            correction.validation_issue if status == "invalid" else None
                        )
                    changes["needsRescan"] = 0

                    assignments = ", ".join(f"{column} = ?" for column in changes)
                    updated += conn.execute(
                        f"UPDATE entries SET {assignments} WHERE id = ?",
                        (*changes.values(), correction.id),
                    ).rowcount
        except (sqlite3.Error, ValidationError) as e:
            logger.error("Failed to apply %d corrections: %s", len(corrections), e)
            return -1

        self.persist()
        return updated

    def mark_for_rescan(self, ids: Sequence[str]) -> int:
        """Flag entries for manual rescan. Returns the number flagged."""
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        try:
            with self.transaction() as conn:
                marked = conn.execute(
                    f"UPDATE entries SET needsRescan = 1 WHERE id IN ({placeholders})",
                    tuple(ids),
                ).rowcount
        except sqlite3.Error as e:
            logger.error("Failed to mark entries for rescan: %s", e)
            return 0
        if marked:
            self.persist()
        return marked

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def all(self, limit: int | None = None, offset: int | None = None,
            sort_by: str | None = None, sort_dir: str | None = None) -> list[LexiconEntry]:
        return self._query(sort_by=sort_by, sort_dir=sort_dir, limit=limit, offset=offset)

    def by_letter(self, letter: str, limit: int | None = None, offset: int | None = None,
                  sort_by: str | None = "hebrew", sort_dir: str | None = None) -> list[LexiconEntry]:
        """Entries whose headword (pointed or consonantal) starts with a letter."""
        pattern = f"{letter}%"
        return self._query(
            "hebrewWord LIKE ? OR hebrewConsonantal LIKE ?", (pattern, pattern),
            sort_by, sort_dir, limit, offset,
        )

    def by_consonantal(self, consonantal: str, limit: int | None = None, offset: int | None = None,
                       sort_by: str | None = "id", sort_dir: str | None = None) -> list[LexiconEntry]:
        return self._query(
            "hebrewConsonantal = ?", (consonantal_form(consonantal),),
            sort_by, sort_dir, limit, offset,
        )

    def by_page(self, page: str, limit: int | None = None, offset: int | None = None,
                sort_by: str | None = "id", sort_dir: str | None = None) -> list[LexiconEntry]:
        return self._query("sourcePage = ?", (page,), sort_by, sort_dir, limit, offset)

    def search(self, query: str, limit: int | None = None, offset: int | None = None,
               sort_by: str | None = "hebrew", sort_dir: str | None = None) -> list[LexiconEntry]:
        """Substring search over headwords, transliteration, root and definition."""
        pattern = f"%{query.strip()}%"
        return self._query(
            """hebrewWord LIKE ? OR hebrewConsonantal LIKE ? OR transliteration LIKE ?
               OR root LIKE ? OR definition LIKE ?""",
            (pattern,) * 5,
            sort_by, sort_dir, limit, offset,
        )

    def by_id(self, entry_id: str) -> LexiconEntry | None:
        entries = self._query("id = ?", (entry_id,))
        return entries[0] if entries else None

    def existing_ids(self, ids: Iterable[str]) -> set[str]:
        """The subset of ids present in the store."""
        wanted = list(dict.fromkeys(ids))
        found: set[str] = set()
        # Stay under SQLite's bound-parameter limit
        for i in range(0, len(wanted), 500):
            chunk = wanted[i:i + 500]
            placeholders = ",".join("?" * len(chunk))
            found.update(self._column_values(
                f"SELECT id FROM entries WHERE id IN ({placeholders})", chunk
            ))
        return found

    def for_validation_range(self, start: int, end: int, include_valid: bool = False,
                             limit: int | None = None, offset: int | None = None,
                             sort_by: str | None = "source",
                             sort_dir: str | None = "asc") -> list[LexiconEntry]:
        """Entries due for validation on pages numbered start..end inclusive."""
        statuses = ("unchecked", "valid") if include_valid else ("unchecked",)
        placeholders = ",".join("?" * len(statuses))
        return self._query(
            f"page_number(sourcePage) BETWEEN ? AND ? "
            f"AND COALESCE(status, 'unchecked') IN ({placeholders})",
            (start, end, *statuses),
            sort_by, sort_dir, limit, offset,
        )

    def invalid_by_page(self, page: str) -> list[LexiconEntry]:
        return self._query("sourcePage = ? AND status = 'invalid'", (page,), "id", "asc")

    def resolve_page(self, number: int) -> tuple[str | None, list[LexiconEntry]]:
        """Find a page's entries by trying each filename candidate in order.

        Returns:
            (matching page id, entries) or (None, []) when nothing matches
        """
        for candidate in page_candidates(number, self.naming):
            entries = self.by_page(candidate)
            if entries:
                return candidate, entries
        return None, []

    # -------------------------------------------------------------------------
    # Integrity queries
    # -------------------------------------------------------------------------

    def _column_values(self, sql: str, params: Sequence[Any] = ()) -> list:
        try:
            return [row[0] for row in self.conn.execute(sql, params).fetchall()]
        except sqlite3.Error as e:
            logger.error("Query failed: %s", e)
            return []

    def pages_with_invalid_status(self) -> list[str]:
        return self._column_values("""
            SELECT DISTINCT sourcePage FROM entries
            WHERE status = 'invalid' AND sourcePage IS NOT NULL AND sourcePage != ''
            ORDER BY sourcePage
        """)

    def root_mismatches(self) -> list[LexiconEntry]:
        """Entries whose root has letters absent from (or rarer in) the headword."""
        candidates = self._query("root IS NOT NULL AND root != ''", (), "id", "asc")
        return [e for e in candidates if root_exceeds_word(e.root, e.hebrew_word)]

    def distinct_part_of_speech(self) -> list[str]:
        return self._column_values("""
            SELECT DISTINCT partOfSpeech FROM entries
            WHERE partOfSpeech IS NOT NULL AND partOfSpeech != ''
            ORDER BY partOfSpeech
        """)

    def distinct_source_pages(self) -> list[str]:
        return self._column_values("""
            SELECT DISTINCT sourcePage FROM entries
            WHERE sourcePage IS NOT NULL AND sourcePage != ''
            ORDER BY sourcePage
        """)

    def missing_page_numbers(self, prefix: str, suffix: str, start: int, end: int) -> list[int]:
        """Page numbers in start..end with no <prefix><digits><suffix> page stored."""
        present = set()
        for page in self.distinct_source_pages():
            number = page_number_from_filename(page, prefix, suffix)
            if number is not None:
                present.add(number)
        return [n for n in range(start, end + 1) if n not in present]

    def total_count(self, filter: CountFilter | None = None) -> int:
        where, params = "", ()
        if filter is not None:
            if filter.letter:
                pattern = f"{filter.letter}%"
                where, params = "hebrewWord LIKE ? OR hebrewConsonantal LIKE ?", (pattern, pattern)
            elif filter.query:
                pattern = f"%{filter.query.strip()}%"
                where = """hebrewWord LIKE ? OR hebrewConsonantal LIKE ? OR transliteration LIKE ?
                           OR root LIKE ? OR definition LIKE ?"""
                params = (pattern,) * 5
            elif filter.page:
                where, params = "sourcePage = ?", (filter.page,)
            elif filter.consonantal:
                where, params = "hebrewConsonantal = ?", (consonantal_form(filter.consonantal),)
        sql = "SELECT COUNT(*) FROM entries" + (f" WHERE {where}" if where else "")
        values = self._column_values(sql, params)
        return values[0] if values else 0

    def stats(self) -> StoreStats:
        """Get statistics about the store."""
        conn = self.conn
        by_status = {status: 0 for status in ENTRY_STATUSES}
        for row in conn.execute(
            "SELECT COALESCE(status, 'unchecked') AS s, COUNT(*) FROM entries GROUP BY s"
        ).fetchall():
            by_status[row[0]] = row[1]

        return StoreStats(
            total_entries=self.total_count(),
            entries_by_status=by_status,
            source_pages=len(self.distinct_source_pages()),
            invalid_pages=len(self.pages_with_invalid_status()),
            needs_rescan=conn.execute(
                "SELECT COUNT(*) FROM entries WHERE needsRescan = 1"
            ).fetchone()[0],
            last_added=conn.execute("SELECT MAX(dateAdded) FROM entries").fetchone()[0],
        )

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def _rewrite(self, label: str, changes: list[tuple[dict[str, Any], str]],
                 total: int) -> MaintenanceResult:
        """Apply per-entry column changes in one unit and persist if any."""
        if not changes:
            return MaintenanceResult(total=total, updated=0)
        try:
            with self.transaction() as conn:
                for columns, entry_id in changes:
                    assignments = ", ".join(f"{c} = ?" for c in columns)
                    conn.execute(
                        f"UPDATE entries SET {assignments} WHERE id = ?",
                        (*columns.values(), entry_id),
                    )
        except sqlite3.Error as e:
            logger.error("%s failed: %s", label, e)
            return MaintenanceResult(total=total, updated=0)

        self.persist()
        logger.info("%s: updated %d of %d entries", label, len(changes), total)
        return MaintenanceResult(total=total, updated=len(changes))

    def reprocess_strongs_numbers(self, index) -> MaintenanceResult:
        """Recompute strongsNumbers from the auxiliary index; write only differences.

        Args:
            index: Object with a join(word) -> str method (StrongsIndex)
        """
        entries = self.all(sort_by="id", sort_dir="asc")
        changes = []
        for entry in entries:
            computed = index.join(entry.hebrew_word)
            if computed != entry.strongs_numbers:
                changes.append(({"strongsNumbers": computed}, entry.id))
        return self._rewrite("Reprocess Strong's numbers", changes, len(entries))

    def rebuild_ids(self, options: RebuildIdsOptions | None = None) -> MaintenanceResult:
        """Renumber every entry as <prefix><n> in the requested order.

        Ordering reads raw column values so rows that fail model
        validation are renumbered too. Rows are first moved to unique
        temporary ids and only then given their final ids, so an old id
        never collides with a new one.
        """
        options = options or RebuildIdsOptions()
        try:
            rows = self.conn.execute(
                "SELECT id, hebrewWord, hebrewConsonantal, sourcePage, dateAdded FROM entries"
            ).fetchall()
        except sqlite3.Error as e:
            logger.error("Rebuild ids failed: %s", e)
            return MaintenanceResult(total=0, updated=0)
        ordered = sorted(rows, key=_rebuild_key(options.sort_by),
                         reverse=options.sort_dir == "desc")

        token = uuid4().hex
        updated = 0
        try:
            with self.transaction() as conn:
                for i, row in enumerate(ordered):
                    conn.execute("UPDATE entries SET id = ? WHERE id = ?",
                                 (f"__rebuild_{token}_{i}", row["id"]))
                for i, row in enumerate(ordered):
                    new_id = options.format_id(i)
                    conn.execute("UPDATE entries SET id = ? WHERE id = ?",
                                 (new_id, f"__rebuild_{token}_{i}"))
                    if new_id != row["id"]:
                        updated += 1
        except sqlite3.Error as e:
            logger.error("Rebuild ids failed: %s", e)
            return MaintenanceResult(total=len(ordered), updated=0)

        if ordered:
            self.persist()
        logger.info("Rebuilt ids: %d of %d changed", updated, len(ordered))
        return MaintenanceResult(total=len(ordered), updated=updated)

    def move_trailing_roman_numeral_to_definition(self) -> MaintenanceResult:
        """Move "word II" homograph numerals to the definition as "II. ...".

        Safe to run repeatedly: a definition already starting with a
        numeral-dot is left alone.
        """
        entries = self.all(sort_by="id", sort_dir="asc")
        changes = []
        for entry in entries:
            word, numeral = split_trailing_numeral(entry.hebrew_word)
            if numeral is None:
                continue
            columns: dict[str, Any] = {"hebrewWord": word}
            consonantal, consonantal_numeral = split_trailing_numeral(entry.hebrew_consonantal)
            if consonantal_numeral is not None:
                columns["hebrewConsonantal"] = consonantal
            if not starts_with_numeral(entry.definition):
                columns["definition"] = f"{numeral}. {entry.definition}"
            changes.append((columns, entry.id))
        return self._rewrite("Move Roman numerals", changes, len(entries))

    def clean_root_field(self) -> MaintenanceResult:
        """Strip trailing Roman numerals ("יָדַע I.") from roots."""
        entries = self.all(sort_by="id", sort_dir="asc")
        changes = []
        for entry in entries:
            root, numeral = split_trailing_numeral(entry.root)
            if numeral is not None:
                changes.append(({"root": root}, entry.id))
        return self._rewrite("Clean roots", changes, len(entries))

    def find_replace_part_of_speech(self, find: str, replace: str) -> int:
        """Replace an exact part-of-speech value everywhere. Returns rows changed."""
        find, replace = find.strip(), replace.strip()
        if not find or find == replace:
            return 0
        try:
            with self.transaction() as conn:
                changed = conn.execute(
                    "UPDATE entries SET partOfSpeech = ? WHERE partOfSpeech = ?",
                    (replace, find),
                ).rowcount
        except sqlite3.Error as e:
            logger.error("Part of speech replace failed: %s", e)
            return 0
        if changed:
            self.persist()
        return changed


def _rebuild_key(sort_by: str):
    """Sort key over raw entry rows for rebuild_ids (collation-aware)."""
    if sort_by == "word":
        return lambda r: (hebrew_sort_key(r["hebrewWord"]), r["id"])
    if sort_by == "source":
        return lambda r: (r["sourcePage"] or "", _id_order(r["id"]))
    if sort_by == "date":
        return lambda r: (r["dateAdded"] or 0, _id_order(r["id"]))
    return lambda r: (
        hebrew_sort_key(r["hebrewConsonantal"] or consonantal_form(r["hebrewWord"])),
        hebrew_sort_key(r["hebrewWord"]),
    )


def _id_order(entry_id: str) -> tuple[int, str]:
    number = id_number(entry_id)
    return (number if number is not None else -1, entry_id)
