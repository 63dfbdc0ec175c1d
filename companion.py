#!/usr/bin/env python3
"""
Sheep Sync companion - keeps the Electric Sheep cache in sync.

Runs in the background next to the renderer: downloads new sheep from the
sheep server, evicts old ones to stay under the cache limit, and answers
renderer events. Votes for the playing sheep are cast with signals:

    kill -USR1 <pid>   vote up
    kill -USR2 <pid>   vote down
"""

import argparse
import asyncio
import os
import signal
import sys
from datetime import datetime

from sheepsync import __version__
from sheepsync.bridge import EventBus, UdpTransport, VoteDirection
from sheepsync.catalog import CatalogClient, CatalogClientConfig
from sheepsync.config import CompanionSettings
from sheepsync.core.formatting import format_size
from sheepsync.core.logging import install_tee
from sheepsync.core.paths import get_logs_dir, get_settings_path
from sheepsync.sync import ContentStore, EngineConfig, FileDownloader, SyncEngine
from sheepsync.votes import OfflineVoteQueue, VoteSubmitter


# ============================================================================
# Main Application
# ============================================================================


class CompanionApp:
    """Builds the services once and wires them together."""

    def __init__(self, settings: CompanionSettings):
        self.settings = settings
        installation_id = settings.get_or_create_installation_id()

        self.store = ContentStore()
        self.bus = EventBus(
            UdpTransport(settings.listen_port, settings.peer_port),
            prefix=settings.event_prefix,
            store=self.store,
        )
        self.catalog = CatalogClient(CatalogClientConfig(
            installation_id=installation_id,
            lists_dir=self.store.lists_dir,
        ))
        self.downloader = FileDownloader()
        self.engine = SyncEngine(
            self.store,
            self.catalog,
            self.downloader,
            bus=self.bus,
            config=EngineConfig.from_settings(settings),
        )
        self.votes = VoteSubmitter(self.bus, OfflineVoteQueue(), installation_id)
        self._vote_tasks: set[asyncio.Task] = set()

        self.engine.add_listener(lambda state: print(f"  Status: {state.describe()}"))

    async def startup(self):
        self.store.ensure_directory_structure()
        await self.bus.start()
        self.bus.broadcast_companion_launched()
        await self.votes.flush_offline_queue()

    async def shutdown(self):
        await self.engine.stop()
        await self.downloader.close()
        await self.votes.close()
        await self.bus.stop()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event):
        def vote(direction: VoteDirection):
            task = loop.create_task(self.votes.vote(direction))
            self._vote_tasks.add(task)
            task.add_done_callback(self._vote_tasks.discard)

        handlers = {
            "SIGINT": stop_event.set,
            "SIGTERM": stop_event.set,
            "SIGUSR1": lambda: vote(VoteDirection.UP),
            "SIGUSR2": lambda: vote(VoteDirection.DOWN),
        }
        for name, handler in handlers.items():
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                loop.add_signal_handler(sig, handler)
            except (NotImplementedError, RuntimeError):
                pass  # Windows event loops don't support signal handlers

    async def run(self, once: bool = False):
        await self.startup()
        try:
            if once:
                await self.engine.run_cycle()
                return
            loop = asyncio.get_running_loop()
            stop_event = asyncio.Event()
            self._install_signal_handlers(loop, stop_event)
            print(f"  Companion running (pid {os.getpid()})")
            self.engine.start()
            await stop_event.wait()
        finally:
            await self.shutdown()


def print_status(settings: CompanionSettings):
    """Print cache and queue status without starting the agent."""
    store = ContentStore()
    store.ensure_directory_structure()
    queue = OfflineVoteQueue()
    print(f"  Sheep cached:    {store.entry_count()}")
    print(f"  Cache size:      {format_size(store.total_size())} / {format_size(settings.cache_budget_bytes)}")
    print(f"  Free disk space: {format_size(store.available_headroom())}")
    print(f"  Offline votes:   {queue.pending_count()}")
    print(f"  Cache location:  {store.root}")


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(
        description="Sheep Sync - keep the Electric Sheep cache in sync"
    )
    parser.add_argument("--status", action="store_true", help="show cache status and exit")
    parser.add_argument("--reset-cache", action="store_true", help="delete all cached sheep and exit")
    parser.add_argument("--once", action="store_true", help="run a single sync cycle and exit")
    args = parser.parse_args()

    settings = CompanionSettings.load(get_settings_path())

    if args.status:
        print_status(settings)
        return

    if args.reset_cache:
        ContentStore().reset()
        print("  Cache reset. Sheep will be downloaded again on the next sync.")
        return

    # Always log to logs/YYYY-MM-DD.log
    log_path = get_logs_dir() / f"{datetime.now().strftime('%Y-%m-%d')}.log"
    tee = install_tee(log_path, version=__version__)

    app = CompanionApp(settings)
    try:
        asyncio.run(app.run(once=args.once))
    finally:
        sys.stdout = tee.terminal
        tee.close()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nCancelled by user.")
        sys.exit(0)
