"""
Event definitions and wire format for the renderer bridge.

Every event has a wire name "{prefix}ES{EventName}". On the wire an event is
a small JSON envelope carrying the name plus an optional payload and query
token. The older plain-text form, where the payload rides on the name as
"{name}.{payload}", is still understood inbound and can be sent for peers
that only speak it.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EventKind(str, Enum):
    # Outgoing (companion -> renderer)
    COMPANION_LAUNCHED = "CompanionLaunched"
    CACHE_UPDATED = "CacheUpdated"
    VOTE_FEEDBACK = "VoteFeedback"
    QUERY_CURRENT = "QueryCurrent"
    PONG = "Pong"
    # Incoming (renderer -> companion)
    PING = "Ping"
    SHEEP_PLAYING = "SheepPlaying"
    PLAYBACK_STARTED = "PlaybackStarted"
    CORRUPTED_FILE = "CorruptedFile"


class VoteDirection(str, Enum):
    UP = "up"
    DOWN = "down"

    @property
    def vote_value(self) -> int:
        """Numeric value sent to the vote server."""
        return 1 if self is VoteDirection.UP else -1

    @classmethod
    def from_vote_value(cls, value: int) -> "VoteDirection":
        return cls.UP if value > 0 else cls.DOWN


@dataclass(frozen=True)
class Event:
    """One bridge event."""
    kind: EventKind
    payload: Optional[str] = None
    token: Optional[str] = None


def wire_name(kind: EventKind, prefix: str) -> str:
    return f"{prefix}ES{kind.value}"


def encode_event(event: Event, prefix: str, legacy: bool = False) -> bytes:
    """
    Serialize an event for the transport.

    Args:
        legacy: send the plain-text "{name}.{payload}" form instead of the
                JSON envelope (tokens are dropped in this form)
    """
    name = wire_name(event.kind, prefix)
    if legacy:
        text = f"{name}.{event.payload}" if event.payload is not None else name
        return text.encode("utf-8")

    envelope = {"name": name}
    if event.payload is not None:
        envelope["payload"] = event.payload
    if event.token is not None:
        envelope["token"] = event.token
    return json.dumps(envelope, separators=(",", ":")).encode("utf-8")


def _kinds_longest_first(prefix: str) -> list[tuple[str, EventKind]]:
    # Longest names first so no base name can shadow a longer one it prefixes
    names = [(wire_name(kind, prefix), kind) for kind in EventKind]
    return sorted(names, key=lambda pair: len(pair[0]), reverse=True)


def _decode_legacy(text: str, prefix: str) -> Optional[Event]:
    for name, kind in _kinds_longest_first(prefix):
        if text == name:
            return Event(kind)
        if text.startswith(name + "."):
            payload = text[len(name) + 1:]
            return Event(kind, payload=payload or None)
    return None


def decode_event(data: bytes, prefix: str) -> Optional[Event]:
    """Parse a datagram into an Event. Returns None for anything unrecognized."""
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None

    if not text.startswith("{"):
        return _decode_legacy(text, prefix)

    try:
        envelope = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(envelope, dict):
        return None

    name = envelope.get("name")
    payload = envelope.get("payload")
    token = envelope.get("token")
    if not isinstance(name, str):
        return None
    if payload is not None and not isinstance(payload, str):
        payload = str(payload)
    if token is not None and not isinstance(token, str):
        token = None

    for kind in EventKind:
        if name == wire_name(kind, prefix):
            return Event(kind, payload=payload, token=token)
    return None
