"""Tests for the entry store."""

import pytest

from lexicon.config import SQLITE_MAGIC
from lexicon.store.db import EntryStore, StoreClosedError
from lexicon.store.models import (
    CountFilter,
    EntryCorrection,
    RebuildIdsOptions,
    ValidationUpdate,
)


def _fail_updates_for(store: EntryStore, entry_id: str) -> None:
    store.conn.execute(f"""
        CREATE TRIGGER fail_{entry_id} BEFORE UPDATE ON entries
        WHEN NEW.id = '{entry_id}'
        BEGIN SELECT RAISE(ABORT, 'boom'); END
    """)


class FakeIndex:
    def __init__(self, numbers: dict[str, str]):
        self.numbers = numbers

    def join(self, word):
        return self.numbers.get(word, "")


class TestWrites:
    def test_add_then_read_back(self, store, persisted, make_entry):
        entry = make_entry("e1", transliteration="ab", root="אב")
        assert store.add_or_replace([entry])

        loaded = store.by_id("e1")
        assert loaded is not None
        assert loaded.hebrew_word == "אָב"
        assert loaded.transliteration == "ab"
        assert loaded.root == "אב"
        assert loaded.status == "unchecked"
        assert loaded.date_added is not None
        assert len(persisted) == 1
        assert persisted[0].startswith(SQLITE_MAGIC)

    def test_accepts_camel_case_dicts(self, store):
        assert store.add_or_replace([{
            "id": "e1", "hebrewWord": "אָב", "definition": "father", "sourcePage": "fuerst_lex_0046.jpg",
        }])
        assert store.by_id("e1").source_page == "fuerst_lex_0046.jpg"

    def test_replace_keeps_date_added(self, store, make_entry):
        store.add_or_replace([make_entry("e1", date_added=100)])
        store.add_or_replace([make_entry("e1", definition="parent", date_added=200)])

        loaded = store.by_id("e1")
        assert loaded.definition == "parent"
        assert loaded.date_added == 100
        assert store.total_count() == 1

    def test_invalid_entry_rolls_back_whole_unit(self, store, persisted, make_entry):
        ok = store.add_or_replace([make_entry("e1"), {"id": "e2", "hebrewWord": "אָב"}])
        assert not ok
        assert store.total_count() == 0
        assert persisted == []

    def test_empty_add_is_noop(self, store, persisted):
        assert store.add_or_replace([])
        assert persisted == []

    def test_delete_and_delete_by_page(self, store, make_entry):
        store.add_or_replace([make_entry("e1"), make_entry("e2"), make_entry("e3", page=47)])
        assert store.delete(["e1", "missing"]) == 1
        assert store.delete_by_page("fuerst_lex_0046.jpg") == 1
        assert [e.id for e in store.all()] == ["e3"]

    def test_update_maps_field_names(self, store, make_entry):
        store.add_or_replace([make_entry("e1")])
        assert store.update("e1", {"partOfSpeech": "v.", "needs_rescan": True})
        loaded = store.by_id("e1")
        assert loaded.part_of_speech == "v."
        assert loaded.needs_rescan is True

    def test_update_rejects_unknown_fields_and_status(self, store, make_entry):
        store.add_or_replace([make_entry("e1")])
        assert not store.update("e1", {"colour": "red"})
        assert not store.update("e1", {"status": "maybe"})
        assert not store.update("missing", {"definition": "x"})

    def test_non_invalid_status_clears_issue(self, store, make_entry):
        store.add_or_replace([make_entry("e1")])
        store.set_validation_status("e1", "invalid", "truncated")
        assert store.by_id("e1").validation_issue == "truncated"

        store.update("e1", {"status": "valid"})
        loaded = store.by_id("e1")
        assert loaded.status == "valid"
        assert loaded.validation_issue is None


class TestValidationStatuses:
    def test_batch_applies_with_single_persist(self, store, persisted, make_entry):
        store.add_or_replace([make_entry("e1"), make_entry("e2")])
        persisted.clear()

        assert store.set_validation_statuses([
            ValidationUpdate(id="e1", status="valid", issue="ignored"),
            {"id": "e2", "status": "invalid", "issue": "wrong root"},
        ])

        assert store.by_id("e1").status == "valid"
        assert store.by_id("e1").validation_issue is None
        assert store.by_id("e2").validation_issue == "wrong root"
        assert len(persisted) == 1

    def test_failure_rolls_back_every_update(self, store, persisted, make_entry):
        store.add_or_replace([make_entry("e1"), make_entry("e2"), make_entry("e3")])
        persisted.clear()
        _fail_updates_for(store, "e2")

        ok = store.set_validation_statuses([
            ValidationUpdate(id="e1", status="valid"),
            ValidationUpdate(id="e2", status="invalid", issue="x"),
            ValidationUpdate(id="e3", status="valid"),
        ])

        assert not ok
        assert [e.status for e in store.all(sort_by="id")] == ["unchecked"] * 3
        assert persisted == []


class TestCorrections:
    def test_apply_corrections(self, store, persisted, make_entry):
        store.add_or_replace([
            make_entry("e1", status="invalid", validation_issue="typo", needs_rescan=True),
            make_entry("e2", status="invalid", validation_issue="typo"),
        ])
        persisted.clear()

        updated = store.apply_corrections([
            EntryCorrection(id="e1", hebrew_word="אֵב", definition="fixed", status="valid"),
            {"id": "e2", "validationIssue": "still unreadable"},
        ])

        assert updated == 2
        e1, e2 = store.by_id("e1"), store.by_id("e2")
        assert (e1.hebrew_word, e1.definition, e1.status) == ("אֵב", "fixed", "valid")
        assert e1.validation_issue is None
        assert e1.needs_rescan is False
        assert e1.part_of_speech == "n.m."
        assert (e2.status, e2.validation_issue) == ("invalid", "still unreadable")
        assert len(persisted) == 1

    def test_failure_returns_minus_one(self, store, make_entry):
        store.add_or_replace([make_entry("e1", status="invalid"), make_entry("e2", status="invalid")])
        _fail_updates_for(store, "e2")

        updated = store.apply_corrections([
            EntryCorrection(id="e1", definition="a", status="valid"),
            EntryCorrection(id="e2", definition="b", status="valid"),
        ])

        assert updated == -1
        assert store.by_id("e1").status == "invalid"

    def test_mark_for_rescan(self, store, make_entry):
        store.add_or_replace([make_entry("e1"), make_entry("e2")])
        assert store.mark_for_rescan(["e2"]) == 1
        assert store.stats().needs_rescan == 1


class TestReads:
    @pytest.fixture
    def filled(self, store, make_entry):
        store.add_or_replace([
            make_entry("F10", hebrew_word="בַּיִת", hebrew_consonantal="בית", definition="house", date_added=3),
            make_entry("F2", hebrew_word="אֵם", hebrew_consonantal="אם", definition="mother", date_added=1),
            make_entry("F1", page=47, definition="father", date_added=2),
        ])
        return store

    def test_sort_by_id_is_numeric(self, filled):
        assert [e.id for e in filled.all(sort_by="id")] == ["F1", "F2", "F10"]

    def test_default_sort_is_newest_first(self, filled):
        assert [e.id for e in filled.all()] == ["F10", "F1", "F2"]

    def test_sort_by_hebrew(self, filled):
        assert [e.id for e in filled.all(sort_by="hebrew")] == ["F1", "F2", "F10"]
        assert [e.id for e in filled.all(sort_by="hebrew", sort_dir="desc")] == ["F10", "F2", "F1"]

    def test_pagination(self, filled):
        assert [e.id for e in filled.all(limit=2, offset=1, sort_by="id")] == ["F2", "F10"]

    def test_by_letter(self, filled):
        assert {e.id for e in filled.by_letter("א")} == {"F1", "F2"}

    def test_by_consonantal_strips_points(self, filled):
        assert [e.id for e in filled.by_consonantal("בַּיִת")] == ["F10"]

    def test_search(self, filled):
        assert [e.id for e in filled.search("moth")] == ["F2"]
        assert filled.total_count(CountFilter(query="o")) == 2

    def test_total_count_filters(self, filled):
        assert filled.total_count() == 3
        assert filled.total_count(CountFilter(page="fuerst_lex_0047.jpg")) == 1
        assert filled.total_count(CountFilter(letter="ב")) == 1

    def test_existing_ids(self, filled):
        assert filled.existing_ids(["F1", "F99", "F1"]) == {"F1"}

    def test_distinct_values(self, filled):
        assert filled.distinct_part_of_speech() == ["n.m."]
        assert filled.distinct_source_pages() == ["fuerst_lex_0046.jpg", "fuerst_lex_0047.jpg"]

    def test_resolve_page_tries_candidates(self, store, make_entry):
        store.add_or_replace([make_entry("e1", page="0046.jpg"), make_entry("e2", page="47")])

        assert store.resolve_page(46) == ("0046.jpg", [store.by_id("e1")])
        page_id, entries = store.resolve_page(47)
        assert page_id == "47"
        assert [e.id for e in entries] == ["e2"]
        assert store.resolve_page(48) == (None, [])

    def test_for_validation_range(self, store, make_entry):
        store.add_or_replace([
            make_entry("e1", page=44),
            make_entry("e2", page=45, status="valid"),
            make_entry("e3", page=46, status="invalid"),
            make_entry("e4", page=47),
        ])
        assert [e.id for e in store.for_validation_range(44, 46)] == ["e1"]
        assert [e.id for e in store.for_validation_range(44, 46, include_valid=True)] == ["e1", "e2"]

    def test_closed_store_raises(self, persisted):
        store = EntryStore.create_empty(persisted.append)
        store.close()
        assert not store.initialized
        with pytest.raises(StoreClosedError):
            store.all()


class TestIntegrityQueries:
    def test_pages_with_invalid_status(self, store, make_entry):
        store.add_or_replace([
            make_entry("e1", page=47, status="invalid"),
            make_entry("e2", page=46, status="invalid"),
            make_entry("e3", page=46, status="invalid"),
            make_entry("e4", page=48, status="valid"),
            make_entry("e5", page="", status="invalid"),
        ])
        assert store.pages_with_invalid_status() == ["fuerst_lex_0046.jpg", "fuerst_lex_0047.jpg"]
        assert [e.id for e in store.invalid_by_page("fuerst_lex_0046.jpg")] == ["e2", "e3"]

    def test_root_mismatches(self, store, make_entry):
        store.add_or_replace([
            make_entry("e1", hebrew_word="יָדַע", root="ידע"),
            make_entry("e2", hebrew_word="אָב", root="אבה"),
            make_entry("e3", hebrew_word="אָב", root=""),
        ])
        assert [e.id for e in store.root_mismatches()] == ["e2"]

    def test_missing_page_numbers(self, store, make_entry):
        store.add_or_replace([
            make_entry("e1", page=44),
            make_entry("e2", page=45),
            make_entry("e3", page=47),
            make_entry("e4", page="fuerst_lex_0046.png"),
        ])
        assert store.missing_page_numbers("fuerst_lex_", ".jpg", 44, 47) == [46]

    def test_stats(self, store, make_entry):
        store.add_or_replace([
            make_entry("e1", status="invalid", validation_issue="x"),
            make_entry("e2", page=47),
        ])
        stats = store.stats()
        assert stats.total_entries == 2
        assert stats.entries_by_status == {"unchecked": 1, "valid": 0, "invalid": 1}
        assert stats.source_pages == 2
        assert stats.invalid_pages == 1


class TestMaintenance:
    def test_rebuild_ids_is_contiguous(self, store, make_entry):
        store.add_or_replace([
            make_entry("F2", hebrew_word="אָב", hebrew_consonantal="אב"),
            make_entry("F1", hebrew_word="בַּיִת", hebrew_consonantal="בית"),
            make_entry("x-uuid", hebrew_word="אֵם", hebrew_consonantal="אם"),
        ])

        result = store.rebuild_ids(RebuildIdsOptions(prefix="F"))

        assert result.total == 3
        assert [e.id for e in store.all(sort_by="id")] == ["F1", "F2", "F3"]
        assert store.by_id("F1").hebrew_consonantal == "אב"
        assert store.by_id("F2").hebrew_consonantal == "אם"
        assert store.by_id("F3").hebrew_consonantal == "בית"

    def test_rebuild_ids_renumbers_undecodable_rows(self, store, make_entry):
        store.add_or_replace([
            make_entry("F5", hebrew_word="אָב", hebrew_consonantal="אב"),
            make_entry("F9", hebrew_word="בַּיִת", hebrew_consonantal="בית"),
        ])
        store.conn.execute(
            "INSERT INTO entries (id, hebrewWord, definition, dateAdded) VALUES ('F1', 'גַּם', NULL, 3)"
        )

        result = store.rebuild_ids(RebuildIdsOptions(prefix="F"))

        assert result.total == 3 == store.total_count()
        ids = sorted(row["id"] for row in store.conn.execute("SELECT id FROM entries"))
        assert ids == ["F1", "F2", "F3"]
        moved = store.conn.execute("SELECT hebrewWord, definition FROM entries WHERE id = 'F3'").fetchone()
        assert (moved["hebrewWord"], moved["definition"]) == ("גַּם", None)

    def test_rebuild_ids_padding_and_direction(self, store, make_entry):
        store.add_or_replace([make_entry("a", date_added=1), make_entry("b", date_added=2)])
        store.rebuild_ids(RebuildIdsOptions(prefix="L", pad_width=3, sort_by="date", sort_dir="desc"))
        assert store.by_id("L001").date_added == 2
        assert store.by_id("L002").date_added == 1

    def test_move_numerals_is_idempotent(self, store, make_entry):
        store.add_or_replace([
            make_entry("e1", hebrew_word="חָפָה II", hebrew_consonantal="חפה II", definition="to cover"),
            make_entry("e2", hebrew_word="עָנָה I", definition="I. to answer"),
            make_entry("e3"),
        ])

        first = store.move_trailing_roman_numeral_to_definition()
        assert first.updated == 2
        e1, e2 = store.by_id("e1"), store.by_id("e2")
        assert (e1.hebrew_word, e1.hebrew_consonantal, e1.definition) == ("חָפָה", "חפה", "II. to cover")
        assert (e2.hebrew_word, e2.definition) == ("עָנָה", "I. to answer")

        second = store.move_trailing_roman_numeral_to_definition()
        assert second.updated == 0
        assert store.by_id("e1").definition == "II. to cover"

    def test_clean_root_field(self, store, make_entry):
        store.add_or_replace([make_entry("e1", root="יָדַע I."), make_entry("e2", root="ידע")])
        result = store.clean_root_field()
        assert result.updated == 1
        assert store.by_id("e1").root == "יָדַע"

    def test_find_replace_part_of_speech(self, store, persisted, make_entry):
        store.add_or_replace([make_entry("e1"), make_entry("e2", part_of_speech="v.")])
        persisted.clear()
        assert store.find_replace_part_of_speech(" n.m. ", "n. m.") == 1
        assert store.find_replace_part_of_speech("same", "same") == 0
        assert store.distinct_part_of_speech() == ["n. m.", "v."]
        assert len(persisted) == 1

    def test_reprocess_strongs_writes_only_differences(self, store, persisted, make_entry):
        store.add_or_replace([
            make_entry("e1", hebrew_word="אָב", strongs_numbers="H1"),
            make_entry("e2", hebrew_word="אֵם"),
        ])
        persisted.clear()

        result = store.reprocess_strongs_numbers(FakeIndex({"אָב": "H1", "אֵם": "H517"}))

        assert (result.total, result.updated) == (2, 1)
        assert store.by_id("e2").strongs_numbers == "H517"
        assert len(persisted) == 1


class TestImages:
    def test_export_and_reopen(self, store, make_entry):
        store.add_or_replace([make_entry("e1")])
        image = store.export_bytes()
        assert image.startswith(SQLITE_MAGIC)

        reopened = EntryStore.from_image(image)
        try:
            assert reopened.by_id("e1").definition == "father"
        finally:
            reopened.close()
