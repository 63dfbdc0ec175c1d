"""
Offline vote queue for Sheep Sync.

Votes that couldn't reach the server are kept in offline_votes.json and
resubmitted later. Every read-modify-write of the file happens under one
asyncio lock, so a flush and an append never interleave.
"""

import asyncio
import json
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..bridge.events import VoteDirection
from ..core.logging import debug_log
from ..core.paths import get_offline_votes_path


@dataclass
class VoteRecord:
    """A vote waiting to be submitted."""
    content_id: str
    vote: int                 # 1 = up, -1 = down
    timestamp: str            # ISO 8601, when the vote was cast
    submitted: bool = False

    @classmethod
    def create(cls, content_id: str, direction: VoteDirection) -> "VoteRecord":
        return cls(
            content_id=content_id,
            vote=direction.vote_value,
            timestamp=datetime.now().isoformat(),
        )

    @property
    def direction(self) -> VoteDirection:
        return VoteDirection.from_vote_value(self.vote)

    @classmethod
    def from_dict(cls, data: dict) -> Optional["VoteRecord"]:
        try:
            return cls(
                content_id=str(data["content_id"]),
                vote=1 if int(data["vote"]) > 0 else -1,
                timestamp=str(data.get("timestamp", "")),
                submitted=bool(data.get("submitted", False)),
            )
        except (KeyError, TypeError, ValueError):
            return None


class OfflineVoteQueue:
    """Durable list of VoteRecords backed by a JSON array."""

    def __init__(self, path: Path = None):
        self.path = path or get_offline_votes_path()
        self.lock = asyncio.Lock()

    def load(self) -> list[VoteRecord]:
        """Load all records. Missing/corrupt file = empty queue."""
        if not self.path.exists():
            return []
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError):
            debug_log(f"VOTES | unreadable queue file | path={self.path}")
            return []
        if not isinstance(data, list):
            return []

        records = []
        for entry in data:
            record = VoteRecord.from_dict(entry) if isinstance(entry, dict) else None
            if record is not None:
                records.append(record)
        return records

    def save(self, records: list[VoteRecord]):
        """Atomic write: write to .tmp file, then rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump([asdict(r) for r in records], f, indent=2)
        tmp_path.replace(self.path)

    async def add(self, record: VoteRecord):
        """Append a record."""
        async with self.lock:
            records = self.load()
            records.append(record)
            self.save(records)

    def pending_count(self) -> int:
        return sum(1 for r in self.load() if not r.submitted)
