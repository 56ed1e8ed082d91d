"""Line-delimited batch files for offline model processing.

Export writes one JSON object per line:

    {"key": "validate-fuerst_lex_0046-jpg-0", "request": {<Messages API params>}}

The key ties a result back to its page. Import accepts whatever the
batch runner hands back: a bare JSON array, one record per line, or
per-line response envelopes whose text is itself JSON, optionally in a
code fence. Lines that cannot be parsed are skipped.
"""

import json
import logging
import re
from collections.abc import Callable, Iterable
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from lexicon.config import JudgeConfig, PageNamingConfig
from lexicon.nlp.models import PageImage
from lexicon.nlp.prompts import (
    build_correction_request,
    build_extraction_request,
    build_validation_request,
)
from lexicon.store.db import EntryStore
from lexicon.store.hebrew import consonantal_form, is_triliteral
from lexicon.store.models import EntryCorrection, LexiconEntry, ValidationUpdate, now_millis
from lexicon.store.pages import slugify

logger = logging.getLogger(__name__)

BATCH_KEY = "_batchKey"

_CORRECTION_ALIASES = {
    field.alias for field in EntryCorrection.model_fields.values() if field.alias
}

# (processed, total)
ImportProgress = Callable[[int, int], None]


class ImportSummary(BaseModel):
    """Outcome of applying one result file."""

    total: int = 0
    applied: int = 0
    skipped: int = 0


# =============================================================================
# Export
# =============================================================================


def _line(key: str, request: dict) -> str:
    return json.dumps({"key": key, "request": request}, ensure_ascii=False)


def _group_by_page(entries: Iterable[LexiconEntry]) -> dict[str, list[LexiconEntry]]:
    pages: dict[str, list[LexiconEntry]] = {}
    for entry in entries:
        pages.setdefault(entry.source_page or "unknown", []).append(entry)
    return pages


def build_validation_batch_jsonl(
    entries: Iterable[LexiconEntry],
    config: JudgeConfig,
    batch_size: int = 25,
) -> str:
    """One validation request per page chunk, keyed validate-<page>-<n>."""
    lines = []
    for page, page_entries in _group_by_page(entries).items():
        for n, i in enumerate(range(0, len(page_entries), batch_size)):
            chunk = page_entries[i:i + batch_size]
            lines.append(_line(f"validate-{slugify(page)}-{n}", build_validation_request(chunk, config)))
    return "\n".join(lines) + ("\n" if lines else "")


def build_correction_batch_jsonl(
    entries: Iterable[LexiconEntry],
    config: JudgeConfig,
    batch_size: int = 10,
    image_for: Callable[[LexiconEntry], PageImage | None] | None = None,
) -> str:
    """One correction request per page chunk, keyed correct-<page>-<n>.

    When image_for is given, each page's image is fetched once and
    attached to every request for that page.
    """
    lines = []
    for page, page_entries in _group_by_page(entries).items():
        image = image_for(page_entries[0]) if image_for is not None else None
        for n, i in enumerate(range(0, len(page_entries), batch_size)):
            chunk = page_entries[i:i + batch_size]
            lines.append(_line(f"correct-{slugify(page)}-{n}", build_correction_request(chunk, config, image)))
    return "\n".join(lines) + ("\n" if lines else "")


def build_extraction_batch_jsonl(
    images: Iterable[PageImage],
    config: JudgeConfig,
    prompt: str | None = None,
) -> str:
    """One extraction request per image, keyed extract-<filename>-<timestamp>."""
    lines = []
    for image in images:
        key = f"extract-{slugify(image.name)}-{now_millis()}"
        lines.append(_line(key, build_extraction_request(image, config, prompt)))
    return "\n".join(lines) + ("\n" if lines else "")


# =============================================================================
# Import
# =============================================================================


def _try_json(value: str):
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return None


def clean_code_fences(value: str) -> str:
    """Strip a surrounding ```lang ... ``` fence."""
    raw = value.strip()
    if not raw.startswith("```"):
        return raw
    line_break = raw.find("\n")
    body = raw[line_break + 1:] if line_break != -1 else raw[3:]
    closing = body.rfind("```")
    if closing != -1:
        body = body[:closing]
    return body.strip()


def _parse_block(value) -> object | None:
    if not isinstance(value, str) or not value:
        return None
    return _try_json(clean_code_fences(value))


class _Collector:
    def __init__(self):
        self.records: list = []

    def push(self, payload, key: str | None) -> None:
        if payload is None:
            return
        items = payload if isinstance(payload, list) else [payload]
        for item in items:
            if key and isinstance(item, dict):
                item[BATCH_KEY] = key
            self.records.append(item)

    def parts(self, parts, key: str | None) -> bool:
        if not isinstance(parts, list):
            return False
        handled = False
        for part in parts:
            if not isinstance(part, dict):
                continue
            parsed = _parse_block(part.get("text") if part.get("text") is not None else part.get("data"))
            if parsed is not None:
                self.push(parsed, key)
                handled = True
        return handled

    def container(self, response, key: str | None) -> bool:
        """Unwrap a response envelope; False when nothing was recognized."""
        if not response:
            return False
        if isinstance(response, list):
            for value in response:
                self.push(value, key)
            return True
        if not isinstance(response, dict):
            return False

        handled = False
        candidates = response.get("candidates")
        if isinstance(candidates, list):
            for candidate in candidates:
                content = candidate.get("content") if isinstance(candidate, dict) else None
                if isinstance(content, dict) and "parts" in content:
                    handled = self.parts(content["parts"], key) or handled
                elif isinstance(content, list):
                    handled = self.parts(content, key) or handled

        if isinstance(response.get("content"), list):
            handled = self.parts(response["content"], key) or handled

        if isinstance(response.get("text"), str):
            parsed = _parse_block(response["text"])
            if parsed is not None:
                self.push(parsed, key)
                handled = True

        return handled


def parse_batch_results(text: str) -> list:
    """Parse a result file into flat records, tagging each with its line key."""
    trimmed = text.strip()
    if not trimmed:
        return []

    direct = _try_json(trimmed)
    if isinstance(direct, list):
        return direct

    lines = [direct] if isinstance(direct, dict) else None
    if lines is None:
        lines = []
        for raw in trimmed.splitlines():
            raw = raw.strip()
            if not raw:
                continue
            parsed = _try_json(raw)
            if parsed is None:
                logger.debug("Skipping unparseable batch line: %.80s", raw)
                continue
            lines.append(parsed)

    collector = _Collector()
    for parsed in lines:
        if isinstance(parsed, list):
            collector.push(parsed, None)
            continue
        if not isinstance(parsed, dict):
            continue

        key = parsed.get("key") or parsed.get("custom_id")
        if collector.container(parsed.get("response"), key):
            continue
        result = parsed.get("result")
        if isinstance(result, dict) and collector.container(result.get("message"), key):
            continue
        if collector.container(parsed, key):
            continue

        if key:
            parsed[BATCH_KEY] = key
        collector.records.append(parsed)

    return collector.records


def source_page_from_key(key: str | None, naming: PageNamingConfig) -> str:
    """Recover the page filename from an extract-<filename>-<timestamp> key."""
    if not key or not key.startswith("extract-"):
        return ""
    pattern = re.escape(slugify(naming.prefix)) + rf"(\d{{{naming.pad_width}}})"
    match = re.search(pattern, key)
    if match:
        return naming.filename(int(match.group(1)))

    page = "-".join(key.split("-")[1:-1])
    if "." not in page:
        slug_ext = "-" + naming.extension.lstrip(".")
        if page.endswith(slug_ext):
            page = page[: -len(slug_ext)]
        page += naming.extension
    return page


def _progress(on_progress: ImportProgress | None, done: int, total: int) -> None:
    if on_progress is not None:
        on_progress(done, total)


def apply_validation_results(
    store: EntryStore,
    records: list,
    on_progress: ImportProgress | None = None,
) -> ImportSummary:
    """Write {id, isValid, issue} records as one status update."""
    total = len(records)
    updates: list[ValidationUpdate] = []
    for i, record in enumerate(records):
        if isinstance(record, dict) and isinstance(record.get("id"), str) and record["id"]:
            status = "valid" if record.get("isValid") else "invalid"
            issue = record.get("issue")
            updates.append(ValidationUpdate(
                id=record["id"], status=status, issue=issue if isinstance(issue, str) else None,
            ))
        _progress(on_progress, i + 1, total)

    known = store.existing_ids(u.id for u in updates)
    updates = [u for u in updates if u.id in known]
    if updates and not store.set_validation_statuses(updates):
        return ImportSummary(total=total, applied=0, skipped=total)
    return ImportSummary(total=total, applied=len(updates), skipped=total - len(updates))


def apply_correction_results(
    store: EntryStore,
    records: list,
    on_progress: ImportProgress | None = None,
) -> ImportSummary:
    """Write correction records (string fields plus status/issue) as one unit."""
    total = len(records)
    corrections: list[EntryCorrection] = []
    for i, record in enumerate(records):
        if isinstance(record, dict) and isinstance(record.get("id"), str) and record["id"]:
            fields = {
                k: v for k, v in record.items()
                if k in EntryCorrection.model_fields or k in _CORRECTION_ALIASES
            }
            try:
                corrections.append(EntryCorrection.model_validate(fields))
            except ValidationError as e:
                logger.warning("Skipping correction for %s: %s", record["id"], e.errors()[0]["msg"])
        _progress(on_progress, i + 1, total)

    known = store.existing_ids(c.id for c in corrections)
    corrections = [c for c in corrections if c.id in known]
    applied = store.apply_corrections(corrections) if corrections else 0
    if applied < 0:
        return ImportSummary(total=total, applied=0, skipped=total)
    return ImportSummary(total=total, applied=applied, skipped=total - applied)


def build_extracted_entry(
    record: dict,
    source_page: str = "",
    strongs=None,
    date_added: int | None = None,
) -> LexiconEntry | None:
    """Turn one extracted record into a new, unchecked entry.

    isRoot marks triliteral headwords; Strong's numbers are looked up
    when an index is given. Returns None for records lacking a headword
    or definition.
    """
    word, definition = record.get("hebrewWord"), record.get("definition")
    if not (isinstance(word, str) and word.strip() and isinstance(definition, str) and definition.strip()):
        return None
    try:
        entry = LexiconEntry(
            id=str(uuid4()),
            hebrew_word=word,
            hebrew_consonantal=record.get("hebrewConsonantal") or consonantal_form(word),
            transliteration=record.get("transliteration") or "",
            part_of_speech=record.get("partOfSpeech") or "",
            definition=definition,
            root=record.get("root") or "",
            is_root=is_triliteral(word),
            source_page=record.get("sourcePage") or source_page,
            source_url=record.get("sourceUrl") or "",
            date_added=date_added if date_added is not None else now_millis(),
            status="unchecked",
        )
    except ValidationError as e:
        logger.warning("Skipping extracted entry %r: %s", word, e.errors()[0]["msg"])
        return None
    if strongs is not None:
        entry.strongs_numbers = strongs.join(word)
    return entry


def apply_extraction_results(
    store: EntryStore,
    records: list,
    strongs=None,
    naming: PageNamingConfig | None = None,
    on_progress: ImportProgress | None = None,
) -> ImportSummary:
    """Insert extracted entries as new, unchecked rows.

    The source page comes from the record or, failing that, from its
    batch key. Strong's numbers are looked up when an index is given.
    """
    naming = naming or PageNamingConfig()
    total = len(records)
    entries: list[LexiconEntry] = []
    now = now_millis()
    for i, record in enumerate(records):
        _progress(on_progress, i + 1, total)
        if not isinstance(record, dict):
            continue
        entry = build_extracted_entry(
            record, source_page_from_key(record.get(BATCH_KEY), naming), strongs, now,
        )
        if entry is not None:
            entries.append(entry)

    if entries and not store.add_or_replace(entries):
        return ImportSummary(total=total, applied=0, skipped=total)
    return ImportSummary(total=total, applied=len(entries), skipped=total - len(entries))
