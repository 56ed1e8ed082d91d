"""Reading SQLite snapshot images from filesystem paths or http(s) URLs."""

import logging
from pathlib import Path

import httpx

from lexicon.config import SQLITE_MAGIC

logger = logging.getLogger(__name__)


def is_sqlite_image(data: bytes | None) -> bool:
    """True when the bytes start with the SQLite file header."""
    return bool(data) and data[: len(SQLITE_MAGIC)] == SQLITE_MAGIC


def is_url(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def read_location(
    location: str,
    client: httpx.Client | None = None,
    timeout: float = 10.0,
) -> bytes | None:
    """Fetch raw bytes from a path or URL.

    Missing files, HTTP errors and network failures return None (logged
    at debug level); the caller decides whether the bytes are usable.
    """
    if is_url(location):
        try:
            if client is not None:
                response = client.get(location)
            else:
                response = httpx.get(location, timeout=timeout, follow_redirects=True)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            logger.debug("Could not fetch %s: %s", location, e)
            return None

    path = Path(location).expanduser()
    try:
        return path.read_bytes()
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
        return None


def first_valid_image(
    locations: list[str],
    client: httpx.Client | None = None,
) -> tuple[str, bytes] | tuple[None, None]:
    """First location whose bytes carry the SQLite header."""
    for location in locations:
        data = read_location(location, client)
        if data is None:
            continue
        if not is_sqlite_image(data):
            logger.warning("Ignoring %s: not a SQLite image", location)
            continue
        return location, data
    return None, None
