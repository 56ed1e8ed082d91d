"""Pydantic v2 models for the lexicon store.

Attribute names are snake_case; the camelCase aliases are the column
names of the `entries` table and the field names of every JSON
interchange format (batch files, JSON export).
"""

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Type definitions
EntryStatus = Literal["unchecked", "valid", "invalid"]
SortKey = Literal["default", "id", "hebrew", "consonantal", "source", "date"]
SortDir = Literal["asc", "desc"]
RebuildSortKey = Literal["consonantal", "word", "source", "date"]

ENTRY_STATUSES: tuple[str, ...] = ("unchecked", "valid", "invalid")


def now_millis() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class LexiconEntry(BaseModel):
    """One lexicon record extracted from a scanned page.

    Attributes:
        id: Unique, stable handle (may be renumbered by rebuild_ids)
        hebrew_word: Headword with vowel points
        hebrew_consonantal: Headword stripped of vowel/cantillation marks
        transliteration: Latin transliteration
        part_of_speech: Grammatical category (n.m., v., adj., ...)
        definition: English definition
        root: Declared root, if any
        is_root: Derived flag - consonantal form has exactly three letters
        strongs_numbers: '/'-joined Strong's numbers from the auxiliary index
        source_page: Page filename the entry was extracted from
        source_url: Retrievable location of the page image
        date_added: Insert time in epoch milliseconds, never updated
        status: Validation state, owned by the validation/correction pipeline
        validation_issue: Explanation when status is 'invalid'
        needs_rescan: Manual curation flag, cleared once reprocessed
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Unique entry id")
    hebrew_word: str = Field(..., alias="hebrewWord")
    hebrew_consonantal: str = Field(default="", alias="hebrewConsonantal")
    transliteration: str = Field(default="")
    part_of_speech: str = Field(default="", alias="partOfSpeech")
    definition: str = Field(...)
    root: str = Field(default="")
    is_root: bool = Field(default=False, alias="isRoot")
    strongs_numbers: str = Field(default="", alias="strongsNumbers")
    source_page: str = Field(default="", alias="sourcePage")
    source_url: str = Field(default="", alias="sourceUrl")
    date_added: int | None = Field(default=None, alias="dateAdded")
    status: EntryStatus = Field(default="unchecked")
    validation_issue: str | None = Field(default=None, alias="validationIssue")
    needs_rescan: bool = Field(default=False, alias="needsRescan")

    @field_validator(
        "hebrew_consonantal",
        "transliteration",
        "part_of_speech",
        "root",
        "strongs_numbers",
        "source_page",
        "source_url",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("is_root", "needs_rescan", mode="before")
    @classmethod
    def _int_to_bool(cls, value):
        return bool(value) if value is not None else False

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value):
        return value or "unchecked"

    def to_row(self) -> dict:
        """Column -> value mapping for the entries table."""
        row = self.model_dump(by_alias=True)
        row["isRoot"] = int(self.is_root)
        row["needsRescan"] = int(self.needs_rescan)
        if self.status != "invalid":
            row["validationIssue"] = None
        return row


class ValidationUpdate(BaseModel):
    """A status change produced by validation (or manual curation)."""

    id: str = Field(..., min_length=1)
    status: EntryStatus
    issue: str | None = None


class EntryCorrection(BaseModel):
    """Field corrections for one entry returned by the correction capability.

    Only fields that are not None are written back.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    hebrew_word: str | None = Field(default=None, alias="hebrewWord")
    hebrew_consonantal: str | None = Field(default=None, alias="hebrewConsonantal")
    root: str | None = None
    definition: str | None = None
    part_of_speech: str | None = Field(default=None, alias="partOfSpeech")
    transliteration: str | None = None
    status: EntryStatus | None = None
    validation_issue: str | None = Field(default=None, alias="validationIssue")


class RebuildIdsOptions(BaseModel):
    """Options for renumbering every entry id."""

    prefix: str = "F"
    start_at: int = Field(default=1, ge=0)
    pad_width: int = Field(default=0, ge=0, le=12)
    sort_by: RebuildSortKey = "consonantal"
    sort_dir: SortDir = "asc"

    def format_id(self, index: int) -> str:
        number = self.start_at + index
        if self.pad_width:
            return f"{self.prefix}{number:0{self.pad_width}d}"
        return f"{self.prefix}{number}"


class MaintenanceResult(BaseModel):
    """Outcome of a whole-store maintenance operation."""

    total: int = 0
    updated: int = 0


class CountFilter(BaseModel):
    """Filter for total_count; at most one field is expected to be set."""

    letter: str | None = None
    query: str | None = None
    page: str | None = None
    consonantal: str | None = None


class StoreStats(BaseModel):
    """Statistics about the store."""

    total_entries: int = 0
    entries_by_status: dict[str, int] = Field(default_factory=dict)
    source_pages: int = 0
    invalid_pages: int = 0
    needs_rescan: int = 0
    last_added: int | None = None
