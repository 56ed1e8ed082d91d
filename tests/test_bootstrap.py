"""Tests for bootstrap source selection, the local cache and the sync client."""

import sqlite3

import httpx
import pytest

from lexicon.bootstrap import Bootstrapper, LocalCache, SnapshotPersister, SyncClient
from lexicon.config import SQLITE_MAGIC
from lexicon.store.db import EntryStore
from lexicon.store.migrations import table_columns
from lexicon.store.models import LexiconEntry


def _image(*ids: str) -> bytes:
    store = EntryStore.create_empty()
    store.add_or_replace([
        LexiconEntry(id=i, hebrew_word="אָב", definition=f"entry {i}") for i in ids
    ])
    image = store.export_bytes()
    store.close()
    return image


class FakeService:
    """Companion service backed by httpx.MockTransport."""

    def __init__(self, snapshot: bytes | None = None, online: bool = True, push_status: int = 200):
        self.snapshot = snapshot
        self.online = online
        self.push_status = push_status
        self.pushed: list[bytes] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path == "/status":
            return httpx.Response(200, json={"ok": True})
        if request.url.path == "/lexicon.sqlite":
            if request.method == "POST":
                self.pushed.append(request.content)
                if self.push_status < 400:
                    self.snapshot = request.content
                return httpx.Response(self.push_status)
            if self.snapshot is None:
                return httpx.Response(404)
            return httpx.Response(200, content=self.snapshot)
        return httpx.Response(404)

    def sync(self, config) -> SyncClient:
        client = httpx.Client(
            base_url=config.server.base_url,
            transport=httpx.MockTransport(self.handler),
        )
        return SyncClient(config.server, client=client)


@pytest.fixture
def online_config(config):
    config.server.enabled = True
    return config


def _load(config, service: FakeService | None = None, **kwargs):
    sync = service.sync(config) if service is not None else None
    return Bootstrapper(config, sync=sync, **kwargs).load()


class TestSourcePriority:
    def test_fresh_store_when_nothing_exists(self, config):
        result = _load(config)

        assert result.source == "fresh"
        assert not result.loaded_from_existing
        assert result.store.total_count() == 0
        assert result.pending_download is not None
        assert result.pending_download.startswith(SQLITE_MAGIC)
        assert config.cache_file.read_bytes().startswith(SQLITE_MAGIC)

    def test_cache_is_used_when_service_disabled(self, config):
        LocalCache(config.cache_file).write(_image("c1"))

        result = _load(config)

        assert result.source == "cache"
        assert result.loaded_from_existing
        assert result.store.by_id("c1") is not None
        assert result.pending_download is None

    def test_corrupt_cache_is_discarded(self, config):
        config.cache_file.parent.mkdir(parents=True)
        config.cache_file.write_bytes(b"definitely not sqlite")

        result = _load(config)

        assert result.discarded_cache
        assert result.source == "fresh"
        assert config.cache_file.read_bytes().startswith(SQLITE_MAGIC)

    def test_prebuilt_is_used_and_cached(self, config, tmp_path):
        bad = tmp_path / "bad.sqlite"
        bad.write_bytes(b"<html>404</html>")
        good = tmp_path / "lexicon.sqlite"
        good.write_bytes(_image("p1"))
        config.prebuilt_locations = [str(tmp_path / "missing.sqlite"), str(bad), str(good)]

        result = _load(config)

        assert result.source == "prebuilt"
        assert result.store.by_id("p1") is not None
        assert config.cache_file.read_bytes() == good.read_bytes()

    def test_prebuilt_over_http(self, config):
        image = _image("h1")
        client = httpx.Client(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, content=image)
        ))
        config.prebuilt_locations = ["https://example.org/lexicon.sqlite"]

        result = _load(config, http_client=client)

        assert result.source == "prebuilt"
        assert result.store.by_id("h1") is not None

    def test_force_fresh_ignores_existing_sources(self, config):
        LocalCache(config.cache_file).write(_image("c1"))

        result = Bootstrapper(config).load(force_fresh=True)

        assert result.source == "fresh"
        assert result.store.total_count() == 0
        assert EntryStore.from_image(config.cache_file.read_bytes()).total_count() == 0


class TestServer:
    def test_server_wins_and_cache_is_kept_as_superseded(self, online_config):
        config = online_config
        LocalCache(config.cache_file).write(_image("c1"))
        server_image = _image("s1")

        result = _load(config, FakeService(snapshot=server_image))

        assert result.source == "server"
        assert result.server_available
        assert result.superseded == ["cache"]
        assert result.store.by_id("s1") is not None
        assert result.store.by_id("c1") is None
        assert config.cache_file.read_bytes() == server_image
        kept = list((config.cache_dir / "superseded").iterdir())
        assert len(kept) == 1
        assert EntryStore.from_image(kept[0].read_bytes()).by_id("c1") is not None

    def test_identical_cache_is_not_superseded(self, online_config):
        image = _image("s1")
        LocalCache(online_config.cache_file).write(image)

        result = _load(online_config, FakeService(snapshot=image))

        assert result.source == "server"
        assert result.superseded == []
        assert not (online_config.cache_dir / "superseded").exists()

    def test_corrupt_server_snapshot_falls_back_to_cache(self, online_config):
        LocalCache(online_config.cache_file).write(_image("c1"))

        result = _load(online_config, FakeService(snapshot=b"garbage bytes"))

        assert result.source == "cache"
        assert result.server_available
        assert result.store.by_id("c1") is not None

    def test_corrupt_server_snapshot_falls_back_to_prebuilt(self, online_config, tmp_path):
        good = tmp_path / "lexicon.sqlite"
        good.write_bytes(_image("p1"))
        online_config.prebuilt_locations = [str(good)]

        result = _load(online_config, FakeService(snapshot=b"garbage bytes"))

        assert result.source == "prebuilt"
        assert result.store.by_id("p1") is not None
        assert online_config.cache_file.read_bytes() == good.read_bytes()

    def test_corrupt_server_snapshot_falls_back_to_fresh(self, online_config):
        service = FakeService(snapshot=b"garbage bytes")

        result = _load(online_config, service)

        assert result.source == "fresh"
        assert result.store.total_count() == 0
        cached = online_config.cache_file.read_bytes()
        assert cached.startswith(SQLITE_MAGIC)
        assert b"garbage bytes" not in cached
        assert service.pushed == [cached]

    def test_unreachable_service_falls_back(self, online_config):
        LocalCache(online_config.cache_file).write(_image("c1"))

        result = _load(online_config, FakeService(online=False))

        assert result.source == "cache"
        assert not result.server_available

    def test_fresh_store_is_pushed_when_service_online(self, online_config):
        service = FakeService(snapshot=None)

        result = _load(online_config, service)

        assert result.source == "fresh"
        assert result.pending_download is None
        assert len(service.pushed) == 1
        assert service.pushed[0].startswith(SQLITE_MAGIC)

    def test_mutations_are_pushed(self, online_config):
        service = FakeService(snapshot=_image("s1"))
        result = _load(online_config, service)

        result.store.add_or_replace([LexiconEntry(id="s2", hebrew_word="אֵם", definition="mother")])

        assert len(service.pushed) == 1
        pushed = EntryStore.from_image(service.pushed[0])
        assert pushed.by_id("s2") is not None
        assert EntryStore.from_image(online_config.cache_file.read_bytes()).by_id("s2") is not None

    def test_push_failure_marks_service_unreachable(self, online_config):
        service = FakeService(snapshot=_image("s1"), push_status=500)
        sync = service.sync(online_config)
        result = Bootstrapper(online_config, sync=sync).load()

        result.store.add_or_replace([LexiconEntry(id="s2", hebrew_word="אֵם", definition="mother")])
        result.store.add_or_replace([LexiconEntry(id="s3", hebrew_word="אֵם", definition="mother")])

        assert not sync.available
        assert len(service.pushed) == 1
        assert EntryStore.from_image(online_config.cache_file.read_bytes()).by_id("s3") is not None

    def test_reset_replaces_service_snapshot(self, online_config):
        service = FakeService(snapshot=_image("s1"))
        LocalCache(online_config.cache_file).write(_image("s1"))

        reset = Bootstrapper(online_config, sync=service.sync(online_config)).load(force_fresh=True)

        assert reset.source == "fresh"
        assert reset.server_available
        assert reset.pending_download is None
        assert len(service.pushed) == 1

        reloaded = _load(online_config, service)

        assert reloaded.source == "server"
        assert reloaded.store.total_count() == 0
        assert reloaded.superseded == []


class TestMigrationOnLoad:
    def test_legacy_cache_is_migrated_and_persisted(self, config):
        conn = sqlite3.connect(":memory:")
        conn.execute("""
            CREATE TABLE entries (
                id TEXT PRIMARY KEY, hebrewWord TEXT, hebrewConsonantal TEXT,
                transliteration TEXT, partOfSpeech TEXT, definition TEXT, root TEXT,
                sourcePage TEXT, sourceUrl TEXT, dateAdded INTEGER
            )
        """)
        conn.execute("INSERT INTO entries (id, hebrewWord, definition) VALUES ('old', 'אָב', 'father')")
        conn.commit()
        LocalCache(config.cache_file).write(conn.serialize())
        conn.close()

        result = _load(config)

        assert result.source == "cache"
        assert "status" in result.migrated_columns
        assert result.store.by_id("old").status == "unchecked"
        cached = EntryStore.from_image(config.cache_file.read_bytes())
        assert "needsRescan" in table_columns(cached.conn)


class TestPersister:
    def test_counts_writes_and_pushes(self, online_config):
        service = FakeService()
        sync = service.sync(online_config)
        sync.ping()
        persister = SnapshotPersister(LocalCache(online_config.cache_file), sync)

        persister(_image("a"))
        sync.available = False
        persister(_image("b"))

        assert persister.writes == 2
        assert persister.pushes == 1

    def test_cache_write_is_atomic_and_private(self, config):
        cache = LocalCache(config.cache_file)
        cache.write(b"first")
        cache.write(b"second")

        assert cache.read() == b"second"
        assert oct(config.cache_file.stat().st_mode & 0o777) == oct(0o600)
        assert [p.name for p in config.cache_dir.iterdir() if p.name.startswith(".cache_")] == []

    def test_ping_respects_disabled_config(self, config):
        service = FakeService()
        assert not service.sync(config).ping()
