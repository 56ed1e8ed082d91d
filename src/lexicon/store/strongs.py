"""Auxiliary lexicon index: headword lemma -> Strong's number.

A separate, read-only SQLite image with one table:

    strongs(lemma TEXT, number TEXT)

It is loaded lazily on first lookup from the first readable location.
"""

import logging
import sqlite3
import threading

import httpx

from lexicon.store.hebrew import strip_word_divider
from lexicon.store.snapshots import first_valid_image

logger = logging.getLogger(__name__)


class StrongsIndex:
    """Lazy, read-only lemma -> number lookup.

    A missing or unreadable snapshot yields an empty index; the failure
    is logged once and lookups return no numbers.
    """

    def __init__(self, locations: list[str], client: httpx.Client | None = None):
        self.locations = list(locations)
        self._client = client
        self._conn: sqlite3.Connection | None = None
        self._loaded = False
        self._lock = threading.Lock()
        self.source: str | None = None

    @classmethod
    def from_image(cls, image: bytes) -> "StrongsIndex":
        """Build an index directly over an image (tests, prebuilt bundles)."""
        index = cls([])
        index._conn = _open_image(image)
        index._loaded = True
        index.source = "<memory>"
        return index

    @property
    def available(self) -> bool:
        self._ensure_loaded()
        return self._conn is not None

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            location, image = first_valid_image(self.locations, self._client)
            if image is None:
                logger.warning(
                    "Strong's index not found (tried %s); numbers will be empty",
                    ", ".join(self.locations) or "no locations",
                )
            else:
                try:
                    self._conn = _open_image(image)
                    self.source = location
                    logger.debug("Loaded Strong's index from %s", location)
                except sqlite3.Error as e:
                    logger.warning("Strong's index at %s is unusable: %s", location, e)
            self._loaded = True

    def strongs_for(self, word: str | None) -> list[str]:
        """Distinct numbers for a headword, in table order."""
        lemma = strip_word_divider(word)
        if not lemma:
            return []
        self._ensure_loaded()
        if self._conn is None:
            return []
        try:
            rows = self._conn.execute(
                "SELECT number FROM strongs WHERE lemma = ?", (lemma,)
            ).fetchall()
        except sqlite3.Error as e:
            logger.warning("Strong's lookup failed for %r: %s", lemma, e)
            return []
        numbers: list[str] = []
        for (number,) in rows:
            if number and number not in numbers:
                numbers.append(number)
        return numbers

    def join(self, word: str | None) -> str:
        """'/'-joined numbers for a headword ('' when none)."""
        return "/".join(self.strongs_for(word))

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def _open_image(image: bytes) -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.deserialize(image)
    return conn
