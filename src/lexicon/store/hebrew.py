"""Hebrew text utilities: mark stripping, letter multisets, collation.

Hebrew points and cantillation live in U+0591..U+05C7; the 27 letter
code points (22 letters plus five final forms) live in U+05D0..U+05EA.
"""

import re
from collections import Counter

MARKS_RE = re.compile(r"[֑-ׇ]")
HEBREW_LETTER_RE = re.compile(r"[א-ת]")

MAQAF = "־"

# Final forms fold to their base letter for counting and ordering
FINAL_FORMS: dict[str, str] = {
    "ך": "כ",  # final kaf
    "ם": "מ",  # final mem
    "ן": "נ",  # final nun
    "ף": "פ",  # final pe
    "ץ": "צ",  # final tsadi
}
_FOLD_TABLE = str.maketrans(FINAL_FORMS)

# "חָפָה I", "יָדַע II." - a Roman numeral separated by whitespace at the end
TRAILING_ROMAN_RE = re.compile(r"^(?P<text>.*?\S)\s+(?P<numeral>[IVXLC]+)\.?\s*$")
# Definition already carrying a homograph numeral: "I. to know"
LEADING_ROMAN_RE = re.compile(r"^\s*[IVXLC]+\.")


def strip_marks(text: str | None) -> str:
    """Remove vowel points and cantillation marks."""
    if not text:
        return ""
    return MARKS_RE.sub("", text)


def consonantal_form(text: str | None) -> str:
    """Consonantal (unpointed) form of a Hebrew word."""
    return strip_marks(text).strip()


def fold_finals(text: str) -> str:
    return text.translate(_FOLD_TABLE)


def count_hebrew_letters(text: str | None) -> int:
    if not text:
        return 0
    return len(HEBREW_LETTER_RE.findall(text))


def is_triliteral(text: str | None) -> bool:
    """True when the (consonantal) text holds exactly three Hebrew letters."""
    return count_hebrew_letters(strip_marks(text)) == 3


def letter_multiset(text: str | None) -> Counter:
    """Letter -> count over Hebrew letters, marks stripped and finals folded."""
    return Counter(fold_finals("".join(HEBREW_LETTER_RE.findall(strip_marks(text)))))


def root_exceeds_word(root: str | None, word: str | None) -> bool:
    """True when some root letter occurs more often than in the word.

    An empty root never mismatches.
    """
    root_letters = letter_multiset(root)
    if not root_letters:
        return False
    word_letters = letter_multiset(word)
    return any(count > word_letters.get(letter, 0) for letter, count in root_letters.items())


def split_trailing_numeral(text: str | None) -> tuple[str, str | None]:
    """Split "word II." into ("word", "II"); returns (text, None) when absent."""
    if not text:
        return "", None
    match = TRAILING_ROMAN_RE.match(text)
    if not match:
        return text, None
    return match.group("text").rstrip(), match.group("numeral")


def starts_with_numeral(text: str | None) -> bool:
    return bool(text) and LEADING_ROMAN_RE.match(text) is not None


def strip_word_divider(text: str | None) -> str:
    """Remove the maqaf used to join words, for auxiliary index lookups."""
    if not text:
        return ""
    return text.replace(MAQAF, "").strip()


# =============================================================================
# Collation
# =============================================================================


def hebrew_sort_key(text: str | None) -> tuple[str, str]:
    """Sort key ordering by unpointed letters first, then by pointed form."""
    text = text or ""
    return fold_finals(strip_marks(text)).strip(), text


def hebrew_collate(left: str | None, right: str | None) -> int:
    """SQLite collation callable (negative, zero or positive)."""
    a = hebrew_sort_key(left)
    b = hebrew_sort_key(right)
    return (a > b) - (a < b)
