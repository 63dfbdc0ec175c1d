"""
Tests for the renderer bridge.

Tests event encoding and the EventBus over an in-process loopback pair,
with a fake renderer on the other end.
"""

import asyncio
import json

import pytest

from sheepsync.bridge import (
    DEFAULT_PREFIX,
    QUERY_TIMEOUT,
    Event,
    EventBus,
    EventKind,
    LoopbackTransport,
    VoteDirection,
    decode_event,
    encode_event,
    wire_name,
)

from conftest import PREFIX, FakeRenderer, sent_kinds


class TestWireFormat:
    """Tests for encoding and decoding events."""

    def test_wire_name(self):
        assert wire_name(EventKind.CACHE_UPDATED, PREFIX) == "org.electricsheep.ESCacheUpdated"

    def test_envelope(self):
        data = encode_event(Event(EventKind.SHEEP_PLAYING, payload="248=1=0=240", token="t1"), PREFIX)

        assert json.loads(data) == {
            "name": "org.electricsheep.ESSheepPlaying",
            "payload": "248=1=0=240",
            "token": "t1",
        }

    def test_envelope_omits_empty_fields(self):
        data = encode_event(Event(EventKind.PONG), PREFIX)
        assert json.loads(data) == {"name": "org.electricsheep.ESPong"}

    @pytest.mark.parametrize("event", [
        Event(EventKind.PING),
        Event(EventKind.CACHE_UPDATED),
        Event(EventKind.VOTE_FEEDBACK, payload="up"),
        Event(EventKind.QUERY_CURRENT, token="abc"),
        Event(EventKind.PLAYBACK_STARTED, payload="248=a.b=0=240", token="x"),
    ])
    def test_envelope_decodes_back(self, event):
        assert decode_event(encode_event(event, PREFIX), PREFIX) == event

    def test_legacy_payload_rides_on_name(self):
        data = encode_event(Event(EventKind.VOTE_FEEDBACK, payload="up"), PREFIX, legacy=True)
        assert data == b"org.electricsheep.ESVoteFeedback.up"

    def test_legacy_decode(self):
        event = decode_event(b"org.electricsheep.ESSheepPlaying.248=12345=0=240", PREFIX)
        assert event == Event(EventKind.SHEEP_PLAYING, payload="248=12345=0=240")

    def test_legacy_decode_without_payload(self):
        assert decode_event(b"org.electricsheep.ESPing", PREFIX) == Event(EventKind.PING)

    def test_legacy_names_are_not_confused_by_shared_prefixes(self):
        # "ESPlaybackStarted" must not match a shorter name it happens to start with
        event = decode_event(b"org.electricsheep.ESPlaybackStarted.248=1=0=240", PREFIX)
        assert event.kind == EventKind.PLAYBACK_STARTED

    @pytest.mark.parametrize("data", [
        b"",
        b"\xff\xfe",
        b"org.electricsheep.ESUnknown",
        b"com.other.ESPing",
        b'{"name": 5}',
        b"[1, 2]",
        b"{not json",
        b'{"name": "org.electricsheep.ESNope"}',
    ])
    def test_unrecognized(self, data):
        assert decode_event(data, PREFIX) is None

    def test_other_prefix(self):
        data = encode_event(Event(EventKind.PING), "com.example.")
        assert decode_event(data, "com.example.") == Event(EventKind.PING)
        assert decode_event(data, PREFIX) is None

    def test_defaults(self):
        assert DEFAULT_PREFIX == "org.electricsheep."
        assert QUERY_TIMEOUT == 2.0


class TestVoteDirection:

    def test_vote_values(self):
        assert VoteDirection.UP.vote_value == 1
        assert VoteDirection.DOWN.vote_value == -1
        assert VoteDirection.from_vote_value(1) is VoteDirection.UP
        assert VoteDirection.from_vote_value(-1) is VoteDirection.DOWN


async def _connected(playing=None, legacy=False, store=None):
    """Start a bus and a fake renderer on a loopback pair."""
    ours, theirs = LoopbackTransport.pair()
    bus = EventBus(ours, prefix=PREFIX, store=store)
    renderer = FakeRenderer(theirs, playing=playing, legacy=legacy)
    await bus.start()
    await renderer.start()
    return bus, renderer


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestEventBus:
    """Tests for EventBus dispatch and queries."""

    def test_ping_gets_pong(self):
        async def scenario():
            bus, renderer = await _connected()
            renderer.send(Event(EventKind.PING))
            await _settle()
            await bus.stop()
            return renderer.received

        received = asyncio.run(scenario())
        assert [e.kind for e in received] == [EventKind.PONG]

    def test_companion_launched(self):
        async def scenario():
            bus, renderer = await _connected()
            bus.broadcast_companion_launched()
            await _settle()
            await bus.stop()
            return renderer.received

        received = asyncio.run(scenario())
        assert received == [Event(EventKind.COMPANION_LAUNCHED, payload="voting=1,rendering=0,gold=0")]

    def test_query_answered(self):
        async def scenario():
            bus, renderer = await _connected(playing="248=12345=0=240")
            result = await bus.query_currently_playing()
            await bus.stop()
            return bus, result

        bus, result = asyncio.run(scenario())
        assert result == "248=12345=0=240"
        assert bus.last_playing == "248=12345=0=240"

    def test_query_times_out_without_renderer(self):
        async def scenario():
            bus, _ = await _connected(playing=None)
            result = await bus.query_currently_playing(timeout=0.05)
            await bus.stop()
            return result

        assert asyncio.run(scenario()) is None

    def test_query_times_out_when_peer_not_listening(self):
        async def scenario():
            ours, _theirs = LoopbackTransport.pair()
            bus = EventBus(ours, prefix=PREFIX, query_timeout=0.05)
            await bus.start()
            result = await bus.query_currently_playing()
            await bus.stop()
            return result, ours

        result, ours = asyncio.run(scenario())
        assert result is None
        assert sent_kinds(ours) == [EventKind.QUERY_CURRENT]

    def test_answer_for_another_token_is_ignored(self):
        async def scenario():
            bus, renderer = await _connected()
            query = asyncio.ensure_future(bus.query_currently_playing(timeout=0.1))
            await _settle()
            renderer.send(Event(EventKind.SHEEP_PLAYING, payload="248=1=0=240", token="someone-else"))
            result = await query
            await bus.stop()
            return result

        assert asyncio.run(scenario()) is None

    def test_concurrent_queries_get_their_own_answers(self):
        async def scenario():
            bus, renderer = await _connected()
            first = asyncio.ensure_future(bus.query_currently_playing(timeout=1))
            second = asyncio.ensure_future(bus.query_currently_playing(timeout=1))
            await _settle()
            tokens = [e.token for e in renderer.received if e.kind == EventKind.QUERY_CURRENT]
            # Answer in reverse order
            renderer.send(Event(EventKind.SHEEP_PLAYING, payload="second", token=tokens[1]))
            renderer.send(Event(EventKind.SHEEP_PLAYING, payload="first", token=tokens[0]))
            results = await asyncio.gather(first, second)
            await bus.stop()
            return tokens, results

        tokens, results = asyncio.run(scenario())
        assert tokens[0] != tokens[1]
        assert results == ["first", "second"]

    def test_untokened_answer_resolves_oldest_query(self):
        async def scenario():
            bus, renderer = await _connected()
            first = asyncio.ensure_future(bus.query_currently_playing(timeout=0.2))
            await _settle()
            second = asyncio.ensure_future(bus.query_currently_playing(timeout=0.2))
            await _settle()
            renderer.send(Event(EventKind.SHEEP_PLAYING, payload="248=1=0=240"))
            results = await asyncio.gather(first, second)
            await bus.stop()
            return results

        assert asyncio.run(scenario()) == ["248=1=0=240", None]

    def test_legacy_renderer_answers_query(self):
        async def scenario():
            bus, _ = await _connected(playing="248=12345=0=240", legacy=True)
            result = await bus.query_currently_playing(timeout=1)
            await bus.stop()
            return result

        assert asyncio.run(scenario()) == "248=12345=0=240"

    def test_playback_started_records_access(self, store):
        async def scenario():
            bus, renderer = await _connected(store=store)
            renderer.send(Event(EventKind.PLAYBACK_STARTED, payload="248=12345=0=240"))
            await _settle()
            await bus.stop()

        asyncio.run(scenario())
        assert "248=12345=0=240" in store.load_playback()

    def test_playback_started_answers_query(self):
        async def scenario():
            bus, renderer = await _connected()
            query = asyncio.ensure_future(bus.query_currently_playing(timeout=1))
            await _settle()
            token = renderer.received[-1].token
            renderer.send(Event(EventKind.PLAYBACK_STARTED, payload="248=7=0=240", token=token))
            result = await query
            await bus.stop()
            return result

        assert asyncio.run(scenario()) == "248=7=0=240"

    def test_subscribers_see_corrupted_file(self):
        seen = []

        async def scenario():
            bus, renderer = await _connected()
            bus.subscribe(EventKind.CORRUPTED_FILE, seen.append)
            renderer.send(Event(EventKind.CORRUPTED_FILE, payload="248=9=0=240"))
            await _settle()
            await bus.stop()

        asyncio.run(scenario())
        assert seen == [Event(EventKind.CORRUPTED_FILE, payload="248=9=0=240")]

    def test_failing_subscriber_does_not_break_dispatch(self):
        seen = []

        def broken(event):
            raise ValueError("nope")

        async def scenario():
            bus, renderer = await _connected()
            bus.subscribe(EventKind.PING, broken)
            bus.subscribe(EventKind.PING, seen.append)
            renderer.send(Event(EventKind.PING))
            await _settle()
            await bus.stop()
            return renderer.received

        received = asyncio.run(scenario())
        assert len(seen) == 1
        assert [e.kind for e in received] == [EventKind.PONG]

    def test_garbage_datagrams_are_dropped(self):
        async def scenario():
            bus, renderer = await _connected()
            renderer.transport.send(b"\x00\x01garbage")
            renderer.send(Event(EventKind.PING))
            await _settle()
            await bus.stop()
            return renderer.received

        received = asyncio.run(scenario())
        assert [e.kind for e in received] == [EventKind.PONG]

    def test_stop_cancels_outstanding_queries(self):
        async def scenario():
            bus, _ = await _connected()
            query = asyncio.ensure_future(bus.query_currently_playing(timeout=5))
            await _settle()
            await bus.stop()
            with pytest.raises(asyncio.CancelledError):
                await query
            return bus.is_listening

        assert asyncio.run(scenario()) is False
