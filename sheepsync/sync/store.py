"""
Content store for Sheep Sync.

On-disk cache of downloaded sheep, split into free and gold tiers. Tracks
when each sheep last played (playback.json) and evicts the least recently
played sheep when the cache grows past its size budget.
"""

import json
import os
import shutil
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from ..catalog.models import ContentItem, full_id_from_filename
from ..core.logging import debug_log
from ..core.paths import get_data_dir


@dataclass
class CacheEntry:
    """A sheep file in the cache."""
    full_id: Optional[str]           # None if the filename doesn't parse
    path: Path
    size: int
    last_accessed: Optional[float]   # Unix timestamp, None if never played


def _stem_from_full_id(full_id: str) -> str:
    return full_id.replace("=", "_")


class ContentStore:
    """
    Manages the sheep cache under the data root.

    Only the owning event loop mutates playback.json; the lock guards its
    read-modify-write against eviction scans running in an executor.
    """

    def __init__(self, root: Path = None):
        # For production: use the data root from paths.py
        # For testing: pass root to use a temp directory
        self.root = root or get_data_dir()
        self.free_dir = self.root / "sheep" / "free"
        self.gold_dir = self.root / "sheep" / "gold"
        self.downloads_dir = self.root / "downloads"
        self.metadata_dir = self.root / "metadata"
        self.lists_dir = self.root / "lists"
        self.playback_file = self.root / "playback.json"

        self._playback_lock = threading.Lock()
        self._listeners: list[Callable[[], None]] = []

    # --- Layout ---

    def ensure_directory_structure(self):
        """Create the directory structure and an empty playback.json if missing."""
        for d in (self.root, self.free_dir, self.gold_dir, self.downloads_dir,
                  self.metadata_dir, self.lists_dir):
            d.mkdir(parents=True, exist_ok=True)
        if not self.playback_file.exists():
            self.playback_file.write_text("{}")

    def tier_dir(self, item: ContentItem) -> Path:
        return self.gold_dir if item.is_gold else self.free_dir

    def path(self, item: ContentItem) -> Path:
        """Final cache location for a sheep."""
        return self.tier_dir(item) / item.filename

    def stage(self, item: ContentItem) -> Path:
        """
        Staging location for an in-progress download.

        Lives in downloads/, never inside a tier, so partial files are never
        listed as cache entries. Any stale staging file is removed.
        """
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        staging = self.downloads_dir / item.staging_filename
        try:
            staging.unlink()
        except FileNotFoundError:
            pass
        return staging

    # --- Listeners ---

    def add_listener(self, callback: Callable[[], None]):
        """Register an in-process callback fired whenever cache contents change."""
        self._listeners.append(callback)

    def _notify(self):
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                debug_log(f"STORE | listener error | {e}")

    # --- Commit / delete ---

    def commit(self, temp_path: Path, item: ContentItem) -> Path:
        """
        Move a finished download into the cache, replacing any existing file.

        The move is a single rename, so the final path either holds the old
        file or the complete new one. On failure the staging file is removed
        and the error propagates.

        Raises:
            OSError: if the move cannot complete
        """
        final_path = self.path(item)
        try:
            final_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(temp_path, final_path)
        except OSError:
            try:
                Path(temp_path).unlink()
            except OSError:
                pass
            raise

        self._write_metadata(item, final_path)
        # A fresh download counts as just used, so it isn't evicted ahead of
        # sheep that have already played
        try:
            self._write_access_time(item.full_id, time.time())
        except OSError as e:
            debug_log(f"STORE | playback write failed | id={item.full_id} | error={e}")
        debug_log(f"STORE | commit | id={item.full_id} | gold={item.is_gold}")
        self._notify()
        return final_path

    def delete(self, item: ContentItem) -> bool:
        """Delete a cached sheep. Returns True if a file was removed."""
        try:
            self.path(item).unlink()
        except OSError:
            return False
        self._remove_metadata(item.full_id)
        self._forget_access_times([item.full_id])
        self._notify()
        return True

    def reset(self):
        """Delete both tiers and recreate the directory structure."""
        for d in (self.free_dir, self.gold_dir):
            shutil.rmtree(d, ignore_errors=True)
        shutil.rmtree(self.metadata_dir, ignore_errors=True)
        self._forget_access_times(None)
        self.ensure_directory_structure()
        debug_log("STORE | reset")
        self._notify()

    # --- Enumeration ---

    def _tier_files(self) -> list[Path]:
        """Regular files across both tiers, free tier first, name order within a tier."""
        files = []
        for d in (self.free_dir, self.gold_dir):
            if not d.exists():
                continue
            files.extend(sorted((p for p in d.iterdir() if p.is_file()), key=lambda p: p.name))
        return files

    def list_entries(self) -> list[CacheEntry]:
        """Enumerate both tiers, rebuilding each sheep's composite key from its filename."""
        playback = self.load_playback()
        entries = []
        for f in self._tier_files():
            try:
                size = f.stat().st_size
            except OSError:
                continue
            full_id = full_id_from_filename(f.name)
            entries.append(CacheEntry(
                full_id=full_id,
                path=f,
                size=size,
                last_accessed=playback.get(full_id) if full_id else None,
            ))
        return entries

    def cached_ids(self) -> set[str]:
        """Composite keys of every cached sheep."""
        return {e.full_id for e in self.list_entries() if e.full_id}

    def entry_count(self) -> int:
        return len(self._tier_files())

    def total_size(self) -> int:
        """Sum of file sizes across both tiers."""
        total = 0
        for f in self._tier_files():
            try:
                total += f.stat().st_size
            except OSError:
                pass
        return total

    # --- Eviction ---

    def evict(self, budget: int) -> list[Path]:
        """
        Delete least recently played sheep until the cache fits in budget.

        Sheep with no recorded playback go first. Ties keep enumeration
        order. A file that can't be deleted is skipped.

        Returns:
            Paths that were deleted
        """
        running_total = self.total_size()
        if running_total <= budget:
            return []

        # Stable sort: never-played (-inf) first, then oldest playback
        candidates = sorted(
            self.list_entries(),
            key=lambda e: e.last_accessed if e.last_accessed is not None else float("-inf"),
        )

        removed = []
        removed_ids = []
        for entry in candidates:
            if running_total <= budget:
                break
            try:
                size = entry.path.stat().st_size
                entry.path.unlink()
            except OSError as e:
                debug_log(f"STORE | evict skip | path={entry.path.name} | error={e}")
                continue
            running_total -= size
            removed.append(entry.path)
            if entry.full_id:
                removed_ids.append(entry.full_id)
                self._remove_metadata(entry.full_id)

        if removed:
            self._forget_access_times(removed_ids)
            debug_log(f"STORE | evicted={len(removed)} | total={running_total} | budget={budget}")
            self._notify()
        return removed

    # --- Playback tracking ---

    def load_playback(self) -> dict[str, float]:
        """Load last-played timestamps (full_id -> unix time)."""
        try:
            with open(self.playback_file) as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError):
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: float(v) for k, v in data.items() if isinstance(v, (int, float))}

    def record_access(self, full_id: str, when: Union[float, datetime, None] = None):
        """Record that a sheep began playing, and persist the timestamp map."""
        if isinstance(when, datetime):
            when = when.timestamp()
        elif when is None:
            when = time.time()

        self._write_access_time(full_id, when)
        self._bump_play_count(full_id, when)

    def _write_access_time(self, full_id: str, when: float):
        with self._playback_lock:
            playback = self.load_playback()
            playback[full_id] = when
            self._save_playback(playback)

    def _forget_access_times(self, full_ids: Optional[list[str]]):
        """Drop timestamps for sheep that left the cache (None = all of them)."""
        try:
            with self._playback_lock:
                playback = self.load_playback()
                if full_ids is None:
                    self._save_playback({})
                    return
                gone = set(full_ids)
                if gone & playback.keys():
                    self._save_playback({k: v for k, v in playback.items() if k not in gone})
        except OSError as e:
            debug_log(f"STORE | playback write failed | error={e}")

    def _save_playback(self, playback: dict[str, float]):
        self.playback_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.playback_file.with_suffix(".json.tmp")
        with open(tmp_file, "w") as f:
            json.dump(playback, f, indent=2)
        tmp_file.replace(self.playback_file)

    # --- Disk space ---

    def available_headroom(self) -> int:
        """Free bytes on the volume holding the cache."""
        target = self.root if self.root.exists() else self.root.parent
        return shutil.disk_usage(target).free

    def has_enough_disk_space(self, min_free: int) -> bool:
        return self.available_headroom() > min_free

    # --- Metadata ---

    def metadata_path(self, full_id: str) -> Path:
        return self.metadata_dir / f"{_stem_from_full_id(full_id)}.json"

    def load_metadata(self, full_id: str) -> Optional[dict]:
        """Load a sheep's metadata, or None if missing/invalid."""
        try:
            with open(self.metadata_path(full_id)) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            return None

    def _save_metadata(self, full_id: str, data: dict):
        path = self.metadata_path(full_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(path)
        except OSError as e:
            debug_log(f"STORE | metadata write failed | id={full_id} | error={e}")

    def _write_metadata(self, item: ContentItem, final_path: Path):
        self._save_metadata(item.full_id, {
            "full_id": item.full_id,
            "generation": item.generation,
            "size": final_path.stat().st_size,
            "url": item.url,
            "downloaded_at": datetime.now().isoformat(),
            "rating": None,
            "play_count": 0,
            "last_played_at": None,
        })

    def _bump_play_count(self, full_id: str, when: float):
        meta = self.load_metadata(full_id)
        if meta is None:
            return
        meta["play_count"] = int(meta.get("play_count", 0)) + 1
        meta["last_played_at"] = datetime.fromtimestamp(when).isoformat()
        self._save_metadata(full_id, meta)

    def _remove_metadata(self, full_id: str):
        try:
            self.metadata_path(full_id).unlink()
        except OSError:
            pass
