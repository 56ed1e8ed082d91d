"""Locating and fetching scanned page images for correction."""

import logging
import mimetypes

import httpx

from lexicon.config import PageNamingConfig
from lexicon.nlp.models import PageImage
from lexicon.store.models import LexiconEntry
from lexicon.store.snapshots import read_location

logger = logging.getLogger(__name__)


class ImageFetcher:
    """Fetch the page image behind an entry.

    Pages following the naming convention are looked up under
    `naming.image_base` (a directory or URL); anything else falls back to
    the entry's own sourceUrl.
    """

    def __init__(self, naming: PageNamingConfig, client: httpx.Client | None = None):
        self.naming = naming
        self._client = client

    def location_for(self, entry: LexiconEntry) -> str | None:
        page = entry.source_page
        if page and page.startswith(self.naming.prefix) and self.naming.image_base:
            return f"{self.naming.image_base.rstrip('/')}/{page}"
        return entry.source_url or None

    def fetch(self, entry: LexiconEntry) -> PageImage | None:
        """The page image for an entry, or None if it cannot be retrieved."""
        location = self.location_for(entry)
        if not location:
            logger.debug("No image location for page %s", entry.source_page)
            return None
        data = read_location(location, self._client)
        if not data:
            logger.warning("Could not fetch page image %s", location)
            return None
        name = entry.source_page or location.rsplit("/", 1)[-1]
        media_type = mimetypes.guess_type(name)[0] or "image/jpeg"
        return PageImage(name=name, data=data, media_type=media_type, source_url=location)

    def fetch_page(self, page: str) -> PageImage | None:
        """Image for a page id that has no stored entries (e.g. a missing page)."""
        return self.fetch(LexiconEntry(id="-", hebrew_word="-", definition="-", source_page=page))
