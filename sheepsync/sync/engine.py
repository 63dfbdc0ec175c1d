"""
Sync engine for Sheep Sync.

Drives the whole pipeline: fetch the catalog, diff it against the cache,
download new sheep one at a time, then reschedule. All state lives on the
event loop that runs the engine; the status surface only reads snapshots.

    Idle -> (fetch, diff) -> Downloading(i, n) -> Idle
    Paused from anywhere; Error(msg) on fetch failures or low disk.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional, TYPE_CHECKING

from ..catalog.models import ContentItem
from ..catalog.parser import diff
from ..core.errors import InsufficientStorage, SheepSyncError
from ..core.formatting import format_duration, format_size
from ..core.logging import debug_log
from .downloader import FileDownloader
from .state import RetryState, SyncState
from .store import ContentStore

if TYPE_CHECKING:
    from ..bridge.bus import EventBus
    from ..catalog.client import CatalogClient
    from ..config.settings import CompanionSettings

LOW_DISK_MESSAGE = "low disk space"


@dataclass
class EngineConfig:
    """Timing and limits for SyncEngine."""
    sync_interval: float = 3600         # Next full cycle after a clean finish
    low_disk_retry: float = 300         # Retry after pausing for disk space
    retry_base: float = 600             # Backoff after a failed cycle
    retry_max: float = 86400
    min_free_bytes: int = 1_000_000_000
    cache_budget: Optional[int] = None  # Eviction budget in bytes (None = no eviction)

    @classmethod
    def from_settings(cls, settings: "CompanionSettings") -> "EngineConfig":
        return cls(
            sync_interval=settings.sync_interval,
            low_disk_retry=settings.low_disk_retry,
            retry_base=settings.retry_base,
            retry_max=settings.retry_max,
            min_free_bytes=settings.min_free_bytes,
            cache_budget=settings.cache_budget_bytes,
        )


@dataclass
class CycleStats:
    """Counters for the current download queue."""
    total: int = 0
    started: int = 0
    downloaded: int = 0
    failed: int = 0
    bytes_downloaded: int = 0


class SyncEngine:
    """
    Keeps the sheep cache in sync with the server catalog.

    The download queue is drained by a single task. pause() cancels that
    task (and the download in flight) but keeps the queue; resume() picks
    up where it stopped.
    """

    def __init__(
        self,
        store: ContentStore,
        catalog: "CatalogClient",
        downloader: FileDownloader,
        bus: "EventBus" = None,
        config: EngineConfig = None,
    ):
        self.store = store
        self.catalog = catalog
        self.downloader = downloader
        self.bus = bus
        self.config = config or EngineConfig()
        self.retry = RetryState(self.config.retry_base, self.config.retry_max)

        self._state = SyncState.idle()
        self._paused = False
        self._stopped = False
        self._queue: deque[ContentItem] = deque()
        self._stats = CycleStats()
        self._task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._listeners: list[Callable[[SyncState], None]] = []
        # Delay of the most recently scheduled restart (seconds)
        self.scheduled_delay: Optional[float] = None

    # =========================================================================
    # Observation
    # =========================================================================

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def pending(self) -> list[ContentItem]:
        """Snapshot of the remaining download queue."""
        return list(self._queue)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, callback: Callable[[SyncState], None]):
        """Register a callback fired on every state change."""
        self._listeners.append(callback)

    def status_text(self) -> str:
        return self._state.describe()

    def _set_state(self, state: SyncState):
        if state == self._state:
            return
        self._state = state
        debug_log(f"ENGINE | state={state.kind} | {state.describe()}")
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception as e:
                debug_log(f"ENGINE | listener error | {e}")

    # =========================================================================
    # Control
    # =========================================================================

    def start(self):
        """Begin a fresh cycle. No-op while paused or while a cycle is running."""
        if self._paused:
            return
        if self.is_running:
            debug_log("ENGINE | start ignored | cycle already running")
            return
        self._cancel_timer()
        self._set_state(SyncState.idle())
        self._task = asyncio.get_running_loop().create_task(self._guarded(self.run_cycle()))

    def pause(self):
        """Stop downloading now, keeping the remaining queue."""
        self._paused = True
        self._cancel_timer()
        if self.is_running:
            self._task.cancel()
        self._set_state(SyncState.paused())

    def resume(self):
        """Continue the existing queue, or start a new cycle if it's empty."""
        if not self._paused:
            return
        self._paused = False
        if self.is_running:
            # The task cancelled by pause() is still unwinding; carry on
            # once it is done so the two never share the queue
            self._task.add_done_callback(lambda _task: self._continue())
            return
        self._continue()

    def _continue(self):
        if self._paused or self._stopped or self.is_running:
            return
        if self._queue:
            self._task = asyncio.get_running_loop().create_task(self._guarded(self._drain_queue()))
        else:
            self._set_state(SyncState.idle())
            self.start()

    async def stop(self):
        """Cancel any running cycle and pending restart (shutdown)."""
        self._stopped = True
        self._cancel_timer()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self, delay: float):
        """Restart the pipeline after delay seconds, replacing any pending restart."""
        self._cancel_timer()
        self.scheduled_delay = delay
        self._timer = asyncio.get_running_loop().call_later(delay, self._on_timer)
        debug_log(f"ENGINE | next cycle in {format_duration(delay)}")

    def _on_timer(self):
        self._timer = None
        self.start()

    def _handle_error(self, message: str):
        """Cycle-level failure: show it, then retry after the backoff delay."""
        delay = self.retry.record_failure()
        print(f"  Sync error: {message} (retrying in {format_duration(delay)})")
        self._set_state(SyncState.error(message))
        self._schedule(delay)

    async def _guarded(self, coro):
        """Run a pipeline coroutine so that nothing but cancellation escapes."""
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            debug_log(f"ENGINE | unexpected error | {type(e).__name__}: {e}")
            self._handle_error(f"Unexpected error: {e}")

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def run_cycle(self):
        """One full cycle: fetch catalog, diff against the cache, drain the queue."""
        loop = asyncio.get_running_loop()
        try:
            items = await loop.run_in_executor(None, self.catalog.fetch_items)
            local_ids = await loop.run_in_executor(None, self.store.cached_ids)
        except SheepSyncError as e:
            self._handle_error(str(e))
            return
        except OSError as e:
            self._handle_error(f"Failed to read cache: {e}")
            return

        # Same sheep listed twice is only downloaded once
        delta = []
        seen = set()
        for item in diff(items, local_ids):
            if item.full_id not in seen:
                seen.add(item.full_id)
                delta.append(item)
        debug_log(f"ENGINE | catalog={len(items)} | cached={len(local_ids)} | new={len(delta)}")

        if not delta:
            self.retry.record_success()
            await self._evict()
            self._set_state(SyncState.idle())
            self._schedule(self.config.sync_interval)
            return

        print(f"  Found {len(delta)} new sheep to download")
        self._queue = deque(delta)
        self._stats = CycleStats(total=len(delta))
        await self._drain_queue()

    async def _drain_queue(self):
        """Download queued sheep in order until the queue is empty."""
        while self._queue:
            if self._paused:
                self._set_state(SyncState.paused())
                return

            try:
                self._check_headroom()
            except InsufficientStorage as e:
                print(f"  Paused downloads: {e}")
                self._set_state(SyncState.error(LOW_DISK_MESSAGE))
                self._schedule(self.config.low_disk_retry)
                return

            item = self._queue[0]
            self._stats.started += 1
            self._set_state(SyncState.downloading(self._stats.started, self._stats.total))
            try:
                await self._download_item(item)
            except asyncio.CancelledError:
                # Item stays at the head of the queue for resume()
                self._stats.started -= 1
                raise
            self._queue.popleft()

        stats = self._stats
        print(f"  Sync complete: {stats.downloaded} downloaded, {stats.failed} failed "
              f"({format_size(stats.bytes_downloaded)})")
        self.retry.record_success()
        await self._evict()
        self._set_state(SyncState.idle())
        if self.bus is not None:
            self.bus.broadcast_cache_updated()
        self._schedule(self.config.sync_interval)

    def _check_headroom(self):
        free = self.store.available_headroom()
        if free <= self.config.min_free_bytes:
            raise InsufficientStorage(
                f"only {format_size(free)} free, need more than {format_size(self.config.min_free_bytes)}"
            )

    async def _download_item(self, item: ContentItem) -> bool:
        """Download, verify and commit one sheep. Failures are logged, not raised."""
        staging = self.store.stage(item)
        result = await self.downloader.download(item, staging)
        if not result.success:
            self._stats.failed += 1
            print(f"  {result.message}")
            return False

        try:
            self.store.commit(staging, item)
        except OSError as e:
            self._stats.failed += 1
            print(f"  ERR: failed to save {item.full_id} - {e}")
            return False

        self._stats.downloaded += 1
        self._stats.bytes_downloaded += result.bytes_downloaded
        return True

    async def _evict(self):
        if self.config.cache_budget is None:
            return
        loop = asyncio.get_running_loop()
        try:
            removed = await loop.run_in_executor(None, self.store.evict, self.config.cache_budget)
        except OSError as e:
            debug_log(f"ENGINE | eviction failed | {e}")
            return
        if removed:
            print(f"  Evicted {len(removed)} least recently played sheep")
