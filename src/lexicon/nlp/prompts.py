"""Prompts and Messages API request bodies for lexicon review.

The same request builders feed both the live judge and the offline
batch files, so a batch line is exactly the request a live call makes.
"""

import base64
import html
import json
import re

from lexicon.config import JudgeConfig
from lexicon.nlp.models import PageImage
from lexicon.store.models import LexiconEntry

MAX_CUSTOM_PROMPT_LENGTH = 4000

VALIDATION_SYSTEM = """You are proofreading entries extracted by OCR from Julius Fürst's
Hebrew and Chaldee Lexicon. For each entry decide whether it is a plausible,
internally consistent dictionary entry.

Mark an entry INVALID when, for example:
- the consonantal form does not match the pointed headword
- the root contains letters that do not occur in the headword
- the definition is truncated, belongs to a neighbouring entry, or is not English
- the part of speech is garbled

Do not invent corrections. Only judge.

Respond with a JSON array, one object per entry, in the same order:
[{"id": "<entry id>", "isValid": true|false, "issue": "<short reason when invalid>"}]"""

VALIDATION_USER = """Entries to check:

{entries}"""

CORRECTION_SYSTEM = """You are correcting OCR errors in entries from Julius Fürst's Hebrew and
Chaldee Lexicon. You are given the scanned page and the entries from it
that failed validation, with the recorded issue.

Read the page and fix each entry so it matches the printed text. Keep the
entry id. Only change fields that are wrong.

Respond with a JSON array, one object per entry:
[{"id": "<entry id>", "hebrewWord": "...", "hebrewConsonantal": "...", "root": "...",
  "definition": "...", "partOfSpeech": "...",
  "status": "valid"|"invalid", "validationIssue": "<remaining problem, if still invalid>"}]

Set status to "valid" when the corrected entry matches the page. Set it to
"invalid" with a validationIssue when the entry cannot be fixed from the page."""

CORRECTION_USER = """Page: {page}

Entries that failed validation:

{entries}"""

EXTRACTION_PROMPT = """Analyze this page from Julius Fürst's Hebrew and Chaldee Lexicon.
Extract every Hebrew word entry on the page.

For each entry, capture:
1. hebrewWord: the main Hebrew word (lemma) including vowel points if visible
2. hebrewConsonantal: the same word stripped of all vowel points
3. transliteration: if present or inferable
4. partOfSpeech: e.g. n.m., v., adj.
5. definition: the English definition (summarized if very long)
6. root: the root word if explicitly mentioned

The page is dense text in columns. Read column by column. Ignore headers,
footers and marginalia that are not dictionary entries.

Respond with a JSON array of objects using exactly those field names."""


def _sanitize_prompt_input(text: str) -> str:
    """Clean a user-supplied prompt before it is sent.

    Removes control characters and role markers, escapes tag characters
    and caps the length.
    """
    if not text:
        return ""

    sanitized = "".join(char for char in text if char.isprintable() or char.isspace())
    sanitized = html.escape(sanitized, quote=False)

    injection_patterns = [
        r"system:",
        r"assistant:",
        r"<\|.*?\|>",
        r"\[INST\]",
        r"\[/INST\]",
    ]
    for pattern in injection_patterns:
        sanitized = re.sub(pattern, "", sanitized, flags=re.IGNORECASE)

    return sanitized[:MAX_CUSTOM_PROMPT_LENGTH].strip()


def format_entries_for_validation(entries: list[LexiconEntry]) -> str:
    rows = [
        {
            "id": e.id,
            "hebrewWord": e.hebrew_word,
            "hebrewConsonantal": e.hebrew_consonantal,
            "transliteration": e.transliteration,
            "partOfSpeech": e.part_of_speech,
            "definition": e.definition,
            "root": e.root,
        }
        for e in entries
    ]
    return json.dumps(rows, ensure_ascii=False, indent=1)


def format_entries_for_correction(entries: list[LexiconEntry]) -> str:
    rows = [
        {
            "id": e.id,
            "hebrewWord": e.hebrew_word,
            "hebrewConsonantal": e.hebrew_consonantal,
            "root": e.root,
            "definition": e.definition,
            "partOfSpeech": e.part_of_speech,
            "validationIssue": e.validation_issue,
        }
        for e in entries
    ]
    return json.dumps(rows, ensure_ascii=False, indent=1)


def image_block(image: PageImage) -> dict:
    """Base64 image content block."""
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": image.media_type,
            "data": base64.b64encode(image.data).decode("ascii"),
        },
    }


def _request(config: JudgeConfig, system: str, content: str | list) -> dict:
    return {
        "model": config.model,
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
        "system": system,
        "messages": [{"role": "user", "content": content}],
    }


def build_validation_request(entries: list[LexiconEntry], config: JudgeConfig) -> dict:
    user = VALIDATION_USER.format(entries=format_entries_for_validation(entries))
    return _request(config, VALIDATION_SYSTEM, user)


def build_correction_request(
    entries: list[LexiconEntry],
    config: JudgeConfig,
    image: PageImage | None = None,
) -> dict:
    """Correction request; the page image block precedes the text when given."""
    page = image.name if image is not None else (entries[0].source_page if entries else "")
    text = CORRECTION_USER.format(page=page, entries=format_entries_for_correction(entries))
    content: list[dict] = []
    if image is not None:
        content.append(image_block(image))
    content.append({"type": "text", "text": text})
    return _request(config, CORRECTION_SYSTEM, content)


def build_extraction_request(
    image: PageImage,
    config: JudgeConfig,
    prompt: str | None = None,
) -> dict:
    custom = _sanitize_prompt_input(prompt or config.extraction_prompt or "")
    text = EXTRACTION_PROMPT
    if custom:
        text = f"{EXTRACTION_PROMPT}\n\nAdditional instructions:\n{custom}"
    content = [image_block(image), {"type": "text", "text": text}]
    return _request(config, "You transcribe scanned Hebrew lexicon pages into structured JSON.", content)
