"""Pytest fixtures for lexicon tests."""

import sqlite3
from collections.abc import Callable
from pathlib import Path

import pytest

from lexicon.config import LexiconConfig, PageNamingConfig, ServerConfig
from lexicon.nlp.judge import EntryJudge, JudgeError
from lexicon.nlp.models import ExtractedEntry, PageImage, ValidationJudgment
from lexicon.store.db import EntryStore
from lexicon.store.models import EntryCorrection, LexiconEntry

# Minimal JPEG header; the judge never looks inside
FAKE_JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 16


class FakeJudge(EntryJudge):
    """Scriptable judge that records every call.

    Args:
        verdict: entry -> (is_valid, issue); default marks "garbled" definitions invalid
        fix: entry -> EntryCorrection; default marks the entry valid with a new definition
        fail_on: 1-based call number that raises `fail_with`
        fail_with: JudgeError subclass raised on that call
        extracted: image -> extracted entries; default returns nothing
        on_call: hook run inside every call, before results are returned
    """

    def __init__(
        self,
        verdict: Callable[[LexiconEntry], tuple[bool, str | None]] | None = None,
        fix: Callable[[LexiconEntry], EntryCorrection] | None = None,
        fail_on: int | None = None,
        on_call: Callable[[int], None] | None = None,
        fail_with: type[JudgeError] = JudgeError,
        extracted: Callable[[PageImage], list[ExtractedEntry]] | None = None,
    ):
        self.verdict = verdict or (lambda e: (False, "bad OCR") if e.definition == "garbled" else (True, None))
        self.fix = fix or (lambda e: EntryCorrection(id=e.id, definition=f"fixed {e.id}", status="valid"))
        self.fail_on = fail_on
        self.on_call = on_call
        self.fail_with = fail_with
        self.extracted = extracted or (lambda image: [])
        self.closed = False
        self.calls: list[tuple[str, list[str]]] = []
        self.images: list[str] = []

    @property
    def name(self) -> str:
        return "fake"

    def _record(self, kind: str, entries: list[LexiconEntry]) -> None:
        self.calls.append((kind, [e.id for e in entries]))
        if self.on_call is not None:
            self.on_call(len(self.calls))
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            raise self.fail_with("judge unavailable")

    def validate(self, entries: list[LexiconEntry]) -> list[ValidationJudgment]:
        self._record("validate", entries)
        judgments = []
        for entry in entries:
            is_valid, issue = self.verdict(entry)
            judgments.append(ValidationJudgment(id=entry.id, is_valid=is_valid, issue=issue))
        return judgments

    def correct(self, entries: list[LexiconEntry], image: PageImage) -> list[EntryCorrection]:
        self._record("correct", entries)
        self.images.append(image.name)
        return [self.fix(e) for e in entries]

    def extract(self, image: PageImage, prompt: str | None = None) -> list[ExtractedEntry]:
        self._record("extract", [])
        self.images.append(image.name)
        return self.extracted(image)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def config(tmp_path: Path) -> LexiconConfig:
    """Config rooted in tmp_path with the service disabled and no prebuilt images."""
    pages_dir = tmp_path / "pages"
    pages_dir.mkdir()
    return LexiconConfig(
        cache_dir=tmp_path / "cache",
        logs_dir=tmp_path / "logs",
        prebuilt_locations=[],
        strongs_locations=[],
        server=ServerConfig(enabled=False),
        pages=PageNamingConfig(image_base=str(pages_dir)),
    )


@pytest.fixture
def persisted() -> list[bytes]:
    """Images handed to the store persister, in order."""
    return []


@pytest.fixture
def store(persisted: list[bytes]):
    """Empty in-memory store that records every persisted image."""
    entry_store = EntryStore.create_empty(persisted.append)
    yield entry_store
    entry_store.close()


@pytest.fixture
def make_entry() -> Callable[..., LexiconEntry]:
    """Factory for entries; page is a page number or a full page id."""

    def _make(entry_id: str, page: int | str = 46, **fields) -> LexiconEntry:
        source_page = page if isinstance(page, str) else f"fuerst_lex_{page:04d}.jpg"
        values = {
            "hebrew_word": "אָב",
            "hebrew_consonantal": "אב",
            "definition": "father",
            "part_of_speech": "n.m.",
            "source_page": source_page,
        }
        values.update(fields)
        return LexiconEntry(id=entry_id, **values)

    return _make


@pytest.fixture
def fake_judge() -> FakeJudge:
    return FakeJudge()


@pytest.fixture
def page_image(config: LexiconConfig) -> Callable[[int], Path]:
    """Write a fake scan for a page number under the configured image base."""

    def _write(number: int) -> Path:
        path = Path(config.pages.image_base) / config.pages.filename(number)
        path.write_bytes(FAKE_JPEG)
        return path

    return _write


@pytest.fixture
def strongs_image() -> Callable[[list[tuple[str, str]]], bytes]:
    """Build a Strong's index image from (lemma, number) rows."""

    def _build(rows: list[tuple[str, str]]) -> bytes:
        conn = sqlite3.connect(":memory:")
        conn.execute("CREATE TABLE strongs (lemma TEXT, number TEXT)")
        conn.executemany("INSERT INTO strongs (lemma, number) VALUES (?, ?)", rows)
        conn.commit()
        image = conn.serialize()
        conn.close()
        return image

    return _build
