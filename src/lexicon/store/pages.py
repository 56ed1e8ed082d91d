"""Scanned-page identifiers: <prefix><NNNN><extension> filenames."""

import re

from lexicon.config import PageNamingConfig

_FOUR_DIGITS_RE = re.compile(r"(\d{4})")
_ANY_DIGITS_RE = re.compile(r"(\d+)")
_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")
_SLUG_RE = re.compile(r"[^a-zA-Z0-9_]")


def parse_page_input(value: str | None) -> int | None:
    """Digits typed by a user ("0041", "p. 41") -> 41."""
    digits = re.sub(r"[^0-9]", "", (value or "").strip())
    return int(digits) if digits else None


def page_number_from_id(value: str | None) -> int | None:
    """Page number from a page id: first 4-digit group, else first digit run."""
    if not value or not value.strip():
        return None
    trimmed = value.strip()
    match = _FOUR_DIGITS_RE.search(trimmed) or _ANY_DIGITS_RE.search(trimmed)
    return int(match.group(1)) if match else None


def page_candidates(number: int, naming: PageNamingConfig) -> list[str]:
    """Page ids tried in order when resolving a page number to its entries."""
    padded = f"{number:0{naming.pad_width}d}"
    return [
        f"{naming.prefix}{padded}{naming.extension}",
        f"{padded}{naming.extension}",
        f"{naming.prefix}{padded}",
        padded,
        str(number),
    ]


def page_number_from_filename(page: str, prefix: str, suffix: str) -> int | None:
    """Strict parse of "<prefix><digits><suffix>"; None for anything else."""
    if not page.startswith(prefix) or not page.endswith(suffix):
        return None
    middle = page[len(prefix):len(page) - len(suffix)] if suffix else page[len(prefix):]
    return int(middle) if middle.isdigit() else None


def id_number(entry_id: str | None) -> int | None:
    """Numeric suffix of an id ("F120" -> 120) used for id ordering."""
    if not entry_id:
        return None
    match = _TRAILING_DIGITS_RE.search(entry_id)
    return int(match.group(1)) if match else None


def slugify(value: str) -> str:
    return _SLUG_RE.sub("-", value)
