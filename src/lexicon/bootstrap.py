"""Bootstrap: choose exactly one active store image per process.

Sources are tried in a fixed priority:

    1. companion snapshot service  (GET /status, then GET /<snapshot>)
    2. local cache file
    3. prebuilt snapshot locations (paths or URLs), cached on acceptance
    4. a fresh, empty store (pushed to the service, or handed back to
       the caller as bytes for manual placement)

Every candidate must carry the SQLite header before it is trusted. After
a store becomes active the column migrator runs, and the image is
persisted once more if columns were added.
"""

import logging
import os
import sqlite3
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import httpx

from lexicon.config import LexiconConfig, ServerConfig, _file_lock
from lexicon.store.db import EntryStore
from lexicon.store.migrations import migrate
from lexicon.store.snapshots import first_valid_image, is_sqlite_image

logger = logging.getLogger(__name__)

SnapshotSource = Literal["server", "cache", "prebuilt", "fresh"]

CACHE_LOCK = "snapshot-cache"


class BootstrapError(Exception):
    """Raised when not even an empty store can be constructed."""


# =============================================================================
# Companion service
# =============================================================================


class SyncClient:
    """Client for the companion snapshot service.

    `available` tracks whether the service is known reachable. It is set
    by ping() and cleared whenever a request fails.
    """

    def __init__(self, config: ServerConfig, client: httpx.Client | None = None):
        self.config = config
        self._client = client
        self.available = False

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=self.config.base_url, timeout=self.config.timeout)
        return self._client

    @property
    def snapshot_path(self) -> str:
        return f"/{self.config.snapshot_name}"

    def ping(self) -> bool:
        """Liveness check: any 2xx from GET /status."""
        if not self.config.enabled:
            self.available = False
            return False
        try:
            response = self.client.get("/status")
            self.available = response.is_success
        except httpx.HTTPError as e:
            logger.debug("Snapshot service unreachable: %s", e)
            self.available = False
        return self.available

    def fetch_snapshot(self) -> bytes | None:
        """Download the stored snapshot (None on any failure)."""
        try:
            response = self.client.get(self.snapshot_path)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch snapshot from service: %s", e)
            return None

    def push_snapshot(self, data: bytes) -> bool:
        """Upload a full image. A failure marks the service unreachable."""
        try:
            response = self.client.post(
                self.snapshot_path,
                content=data,
                headers={"Content-Type": "application/octet-stream"},
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning("Snapshot push failed, service marked unreachable: %s", e)
            self.available = False
            return False

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


# =============================================================================
# Local cache
# =============================================================================


class LocalCache:
    """Single-file durable cache of the store image."""

    def __init__(self, path: Path, lock_dir: Path | None = None):
        self.path = path
        self.lock_dir = lock_dir or path.parent / "locks"

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read cache %s: %s", self.path, e)
            return None

    def write(self, data: bytes) -> None:
        """Atomically replace the cache file under a file lock."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with _file_lock(CACHE_LOCK, self.lock_dir):
            temp_fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".cache_", suffix=".sqlite.tmp"
            )
            try:
                with os.fdopen(temp_fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(temp_path, 0o600)
                os.replace(temp_path, self.path)
            except Exception:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise

    def delete(self) -> None:
        with _file_lock(CACHE_LOCK, self.lock_dir):
            self.path.unlink(missing_ok=True)

    def keep_superseded(self, data: bytes) -> Path:
        """Copy a displaced image to superseded/ so it can be recovered."""
        target_dir = self.path.parent / "superseded"
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{self.path.stem}-{int(time.time() * 1000)}{self.path.suffix}"
        target.write_bytes(data)
        return target


class SnapshotPersister:
    """Store persister: write the full image to the cache, push to the service.

    Push failures are logged and never raised; cache write failures
    propagate.
    """

    def __init__(self, cache: LocalCache, sync: SyncClient | None = None):
        self.cache = cache
        self.sync = sync
        self.writes = 0
        self.pushes = 0

    def __call__(self, data: bytes) -> None:
        self.cache.write(data)
        self.writes += 1
        if self.sync is not None and self.sync.available:
            if self.sync.push_snapshot(data):
                self.pushes += 1


# =============================================================================
# Loader
# =============================================================================


@dataclass
class BootstrapResult:
    """Outcome of one bootstrap."""

    store: EntryStore
    source: SnapshotSource
    server_available: bool = False
    discarded_cache: bool = False
    loaded_from_existing: bool = False
    # Fresh image the caller should place manually (service unreachable)
    pending_download: bytes | None = None
    migrated_columns: list[str] = field(default_factory=list)
    # Lower-priority images displaced by the chosen one
    superseded: list[str] = field(default_factory=list)


class Bootstrapper:
    """Reconcile the candidate sources into one active EntryStore."""

    def __init__(
        self,
        config: LexiconConfig,
        sync: SyncClient | None = None,
        cache: LocalCache | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.config = config
        self.sync = sync or SyncClient(config.server)
        self.cache = cache or LocalCache(config.cache_file)
        self.http_client = http_client
        self.persister = SnapshotPersister(self.cache, self.sync)

    def _open(self, source: str, image: bytes) -> tuple[EntryStore, list[str]] | None:
        """Open an image and migrate it; None if SQLite rejects it."""
        store = None
        try:
            store = EntryStore.from_image(image, self.persister, self.config.pages)
            with store.transaction() as conn:
                added = migrate(conn)
            return store, added
        except sqlite3.Error as e:
            logger.warning("Discarding %s image: %s", source, e)
            if store is not None:
                store.close()
            return None

    def load(self, force_fresh: bool = False) -> BootstrapResult:
        """Run the source priority chain.

        Args:
            force_fresh: Skip every existing source and start empty

        Raises:
            BootstrapError: If an empty store cannot be created
        """
        # Check the service even when forcing fresh so the empty image replaces its copy
        server_available = False
        if self.config.server.enabled:
            server_available = self.sync.ping()
        else:
            self.sync.available = False

        discarded_cache = False
        superseded: list[str] = []
        opened: tuple[EntryStore, list[str]] | None = None
        source: SnapshotSource = "fresh"

        if not force_fresh:
            server_image = None
            if server_available:
                server_image = self.sync.fetch_snapshot()
                if server_image is not None and not is_sqlite_image(server_image):
                    logger.warning("Service snapshot has no SQLite header, ignoring it")
                    server_image = None

            cached = self.cache.read()
            if cached is not None and not is_sqlite_image(cached):
                logger.warning("Local cache %s is corrupted, discarding it", self.cache.path)
                self.cache.delete()
                discarded_cache = True
                cached = None

            if server_image is not None:
                opened = self._open("server", server_image)
                if opened is not None:
                    source = "server"
                    if cached is not None and cached != server_image:
                        kept = self.cache.keep_superseded(cached)
                        superseded.append("cache")
                        logger.warning(
                            "Service snapshot replaces a different local cache; old cache kept at %s",
                            kept,
                        )
                        self.cache.write(server_image)
                    elif cached is None:
                        self.cache.write(server_image)

            if opened is None and cached is not None:
                opened = self._open("cache", cached)
                if opened is not None:
                    source = "cache"
                else:
                    self.cache.delete()
                    discarded_cache = True

            if opened is None:
                location, prebuilt = first_valid_image(
                    self.config.prebuilt_locations, self.http_client
                )
                if prebuilt is not None:
                    opened = self._open(f"prebuilt {location}", prebuilt)
                    if opened is not None:
                        source = "prebuilt"
                        logger.info("Loaded prebuilt snapshot from %s", location)
                        self.cache.write(prebuilt)

        pending_download = None
        if opened is None:
            try:
                store = EntryStore.create_empty(self.persister, self.config.pages)
            except sqlite3.Error as e:
                raise BootstrapError(f"Could not create an empty store: {e}") from e
            migrated: list[str] = []
            try:
                store.persist()
                persisted = True
            except OSError as e:
                logger.error("Could not write the fresh store to %s: %s", self.cache.path, e)
                persisted = False
            if not persisted or not self.sync.available:
                pending_download = store.export_bytes()
            logger.info("Started a fresh store")
        else:
            store, migrated = opened
            if migrated:
                store.persist()

        return BootstrapResult(
            store=store,
            source=source,
            server_available=server_available,
            discarded_cache=discarded_cache,
            loaded_from_existing=source != "fresh",
            pending_download=pending_download,
            migrated_columns=migrated,
            superseded=superseded,
        )
