"""
Event bus between the companion and the renderer process.

Events are addressed by name and delivered at most once, in no particular
order. The only replies are pong (to ping) and the playback answer to a
"what's playing" query, which is correlated by a per-query token.
"""

import asyncio
import uuid
from collections import OrderedDict, defaultdict
from typing import Callable, Optional, TYPE_CHECKING

from ..core.constants import COMPANION_CAPABILITIES
from ..core.logging import debug_log
from .events import Event, EventKind, VoteDirection, decode_event, encode_event
from .transport import Transport

if TYPE_CHECKING:
    from ..sync.store import ContentStore

DEFAULT_PREFIX = "org.electricsheep."
QUERY_TIMEOUT = 2.0

Handler = Callable[[Event], None]


class EventBus:
    """
    Publishes companion events and dispatches renderer events.

    Built-in handling:
    - ping: reply with pong
    - sheep-playing / playback-started: answer an outstanding query;
      playback-started also updates the store's last-played time
    - corrupted-file: logged, then passed to subscribers (no automatic
      re-download)
    """

    def __init__(
        self,
        transport: Transport,
        prefix: str = DEFAULT_PREFIX,
        query_timeout: float = QUERY_TIMEOUT,
        store: "ContentStore" = None,
        legacy_names: bool = False,
    ):
        self.transport = transport
        self.prefix = prefix
        self.query_timeout = query_timeout
        self.legacy_names = legacy_names
        self._store = store

        self._listening = False
        self._handlers: dict[EventKind, list[Handler]] = defaultdict(list)
        # token -> future, oldest first
        self._pending: "OrderedDict[str, asyncio.Future]" = OrderedDict()
        self.last_playing: Optional[str] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        """Start listening for renderer events."""
        if self._listening:
            return
        await self.transport.open(self._on_datagram)
        self._listening = True
        print("  Bridge: listening for renderer events")

    async def stop(self):
        if not self._listening:
            return
        self._listening = False
        await self.transport.close()
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
        print("  Bridge: stopped listening")

    @property
    def is_listening(self) -> bool:
        return self._listening

    def subscribe(self, kind: EventKind, handler: Handler):
        """Register a hook called for every inbound event of a kind."""
        self._handlers[kind].append(handler)

    # =========================================================================
    # Outgoing
    # =========================================================================

    def publish(self, kind: EventKind, payload: Optional[str] = None, token: Optional[str] = None):
        """Send an event to the renderer. Fire-and-forget."""
        event = Event(kind, payload=payload, token=token)
        self.transport.send(encode_event(event, self.prefix, legacy=self.legacy_names))
        debug_log(f"BRIDGE | out | {kind.value} | payload={payload} | token={token}")

    def broadcast_companion_launched(self, capabilities: str = COMPANION_CAPABILITIES):
        self.publish(EventKind.COMPANION_LAUNCHED, payload=capabilities)
        print(f"  Bridge: companion launched with capabilities: {capabilities}")

    def send_pong(self):
        self.publish(EventKind.PONG)

    def broadcast_cache_updated(self):
        self.publish(EventKind.CACHE_UPDATED)

    def send_vote_feedback(self, direction: VoteDirection):
        self.publish(EventKind.VOTE_FEEDBACK, payload=direction.value)

    async def query_currently_playing(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Ask the renderer which sheep is playing.

        Resolves with the id from the first matching sheep-playing or
        playback-started event, or None if nothing arrives within the
        timeout. Each query gets its own token, so concurrent queries
        don't steal each other's answers.
        """
        timeout = self.query_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        token = uuid.uuid4().hex[:12]
        future = loop.create_future()
        self._pending[token] = future

        self.publish(EventKind.QUERY_CURRENT, token=token)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            debug_log(f"BRIDGE | query timeout | token={token}")
            return None
        finally:
            self._pending.pop(token, None)

    # =========================================================================
    # Incoming
    # =========================================================================

    def _on_datagram(self, data: bytes):
        event = decode_event(data, self.prefix)
        if event is None:
            debug_log(f"BRIDGE | in | unrecognized | {data[:80]!r}")
            return
        self.dispatch(event)

    def dispatch(self, event: Event):
        """Handle one inbound event, then pass it to subscribers."""
        debug_log(f"BRIDGE | in | {event.kind.value} | payload={event.payload} | token={event.token}")

        if event.kind == EventKind.PING:
            self.send_pong()
        elif event.kind == EventKind.SHEEP_PLAYING:
            self._handle_playing(event)
        elif event.kind == EventKind.PLAYBACK_STARTED:
            self._handle_playback_started(event)
        elif event.kind == EventKind.CORRUPTED_FILE:
            if event.payload:
                print(f"  Bridge: renderer reported corrupted sheep {event.payload}")

        for handler in list(self._handlers.get(event.kind, [])):
            try:
                handler(event)
            except Exception as e:
                debug_log(f"BRIDGE | handler error | {event.kind.value} | {e}")

    def _handle_playing(self, event: Event):
        if not event.payload:
            return
        self.last_playing = event.payload
        self._resolve_query(event.payload, event.token)

    def _handle_playback_started(self, event: Event):
        if not event.payload:
            return
        self.last_playing = event.payload
        if self._store is not None:
            try:
                self._store.record_access(event.payload)
            except OSError as e:
                debug_log(f"BRIDGE | record_access failed | id={event.payload} | {e}")
        self._resolve_query(event.payload, event.token)

    def _resolve_query(self, sheep_id: str, token: Optional[str]):
        """
        Answer an outstanding query.

        A tokened answer only resolves its own query; answers for unknown
        tokens are ignored. An untokened answer (legacy renderer) resolves
        the oldest outstanding query.
        """
        if token is not None:
            future = self._pending.get(token)
        else:
            future = next((f for f in self._pending.values() if not f.done()), None)

        if future is not None and not future.done():
            future.set_result(sheep_id)
