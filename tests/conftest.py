"""Pytest configuration and shared fixtures."""

import asyncio
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from sheepsync.bridge import EventBus, EventKind, LoopbackTransport, decode_event, encode_event
from sheepsync.bridge.events import Event
from sheepsync.catalog import ContentItem
from sheepsync.core.errors import SheepSyncError
from sheepsync.sync import ContentStore, DownloadResult, EngineConfig, SyncEngine

PREFIX = "org.electricsheep."


def make_item(
    sheep_id: str = "12345",
    generation: int = 248,
    first: int = 0,
    last: int = 240,
    size: int | None = None,
    url: str | None = "http://v3d0.sheepserver.net/gen/248/12345/sheep.avi",
) -> ContentItem:
    """Build a ContentItem with sensible defaults."""
    return ContentItem(id=sheep_id, generation=generation, first=first, last=last, size=size, url=url)


def put_in_cache(store: ContentStore, item: ContentItem, size: int) -> Path:
    """Write a sheep file of the given size straight into the cache."""
    path = store.path(item)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00" * size)
    return path


def sent_kinds(transport: LoopbackTransport) -> list[EventKind]:
    """Kinds of every event a loopback transport has sent."""
    kinds = []
    for data in transport.sent:
        event = decode_event(data, PREFIX)
        if event is not None:
            kinds.append(event.kind)
    return kinds


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def data_root(temp_dir, monkeypatch):
    """Point SHEEPSYNC_ROOT at a temp dir so nothing touches the real home."""
    root = temp_dir / "electricsheep"
    monkeypatch.setenv("SHEEPSYNC_ROOT", str(root))
    return root


@pytest.fixture
def store(data_root):
    store = ContentStore(data_root)
    store.ensure_directory_structure()
    return store


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeCatalog:
    """Stands in for CatalogClient.fetch_items()."""

    def __init__(self, items=None, error: SheepSyncError | None = None):
        self.items = list(items or [])
        self.error = error
        self.calls = 0

    def fetch_items(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.items)


class FakeDownloader:
    """
    Stands in for FileDownloader.download().

    payloads maps full_id -> bytes; a missing id fails the download. If
    gate is set, every download waits on it (for pause tests).
    """

    def __init__(self, payloads: dict[str, bytes], gate: asyncio.Event | None = None):
        self.payloads = payloads
        self.gate = gate
        self.started: asyncio.Event | None = None
        self.requested: list[str] = []

    async def download(self, item: ContentItem, dest: Path) -> DownloadResult:
        self.requested.append(item.full_id)
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        data = self.payloads.get(item.full_id)
        if data is None:
            return DownloadResult(False, dest, f"ERR (HTTP 404): {item.full_id}")
        if item.size is not None and len(data) != item.size:
            return DownloadResult(False, dest, f"ERR: {item.full_id} - size mismatch")
        dest.write_bytes(data)
        return DownloadResult(True, dest, f"OK: {item.filename}", bytes_downloaded=len(data))


@dataclass
class EngineEnv:
    """A SyncEngine wired to fakes, plus the bus transports."""
    engine: SyncEngine
    store: ContentStore
    catalog: FakeCatalog
    downloader: FakeDownloader
    bus: EventBus
    transport: LoopbackTransport
    states: list = field(default_factory=list)


def make_engine(
    store: ContentStore,
    catalog: FakeCatalog,
    downloader: FakeDownloader,
    config: EngineConfig | None = None,
) -> EngineEnv:
    """Build an engine with plenty of disk headroom and a recording listener."""
    transport, _renderer = LoopbackTransport.pair()
    bus = EventBus(transport, prefix=PREFIX)
    config = config or EngineConfig(min_free_bytes=0)
    engine = SyncEngine(store, catalog, downloader, bus=bus, config=config)
    env = EngineEnv(engine, store, catalog, downloader, bus, transport)
    engine.add_listener(env.states.append)
    return env


class FakeRenderer:
    """
    The renderer side of a loopback pair.

    Answers QueryCurrent with SheepPlaying for `playing` (echoing the token
    unless `legacy` is set) and records everything it receives.
    """

    def __init__(self, transport: LoopbackTransport, playing: str | None = None, legacy: bool = False):
        self.transport = transport
        self.playing = playing
        self.legacy = legacy
        self.received: list[Event] = []

    async def start(self):
        await self.transport.open(self._on_datagram)

    def _on_datagram(self, data: bytes):
        event = decode_event(data, PREFIX)
        if event is None:
            return
        self.received.append(event)
        if event.kind == EventKind.QUERY_CURRENT and self.playing is not None:
            token = None if self.legacy else event.token
            self.send(Event(EventKind.SHEEP_PLAYING, payload=self.playing, token=token))

    def send(self, event: Event):
        self.transport.send(encode_event(event, PREFIX, legacy=self.legacy))
