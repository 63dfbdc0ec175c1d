"""
Tests for vote submission and the offline vote queue.

The vote endpoint is never contacted: submit() or the aiohttp session is
patched, and the renderer is a fake on a loopback pair.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from sheepsync.bridge import Event, EventBus, EventKind, LoopbackTransport, VoteDirection
from sheepsync.core.errors import VoteSubmissionFailed
from sheepsync.votes import OfflineVoteQueue, VoteRecord, VoteSubmitter

from conftest import PREFIX, FakeRenderer


@pytest.fixture
def queue(temp_dir):
    return OfflineVoteQueue(temp_dir / "offline_votes.json")


def _submitter(queue, playing=None):
    ours, theirs = LoopbackTransport.pair()
    bus = EventBus(ours, prefix=PREFIX, query_timeout=0.1)
    renderer = FakeRenderer(theirs, playing=playing)
    return VoteSubmitter(bus, queue, "abc123"), renderer


class TestVoteRecord:

    def test_create(self):
        record = VoteRecord.create("248=1=0=240", VoteDirection.DOWN)
        assert record.vote == -1
        assert record.direction is VoteDirection.DOWN
        assert record.submitted is False
        assert record.timestamp

    @pytest.mark.parametrize("data", [{}, {"content_id": "x"}, {"content_id": "x", "vote": "up"}])
    def test_from_dict_rejects_invalid(self, data):
        assert VoteRecord.from_dict(data) is None


class TestOfflineVoteQueue:
    """Tests for the durable queue file."""

    def test_missing_file_is_empty(self, queue):
        assert queue.load() == []
        assert queue.pending_count() == 0

    def test_add_persists(self, queue):
        record = VoteRecord.create("248=1=0=240", VoteDirection.UP)
        asyncio.run(queue.add(record))

        reloaded = OfflineVoteQueue(queue.path)
        assert reloaded.load() == [record]
        assert reloaded.pending_count() == 1

    def test_file_is_json_array(self, queue):
        asyncio.run(queue.add(VoteRecord("248=1=0=240", 1, "2024-01-01T00:00:00")))

        data = json.loads(queue.path.read_text())
        assert data == [{
            "content_id": "248=1=0=240",
            "vote": 1,
            "timestamp": "2024-01-01T00:00:00",
            "submitted": False,
        }]

    def test_corrupt_file_is_empty(self, queue):
        queue.path.write_text("{oops")
        assert queue.load() == []

    def test_invalid_entries_are_skipped(self, queue):
        queue.path.write_text(json.dumps([
            {"content_id": "a", "vote": 1, "timestamp": "t"},
            "garbage",
            {"vote": -1},
        ]))
        assert [r.content_id for r in queue.load()] == ["a"]


class TestVote:
    """Tests for voting on the playing sheep."""

    def test_nothing_playing(self, queue):
        submitter, renderer = _submitter(queue, playing=None)
        submitter.submit = AsyncMock(return_value=True)

        async def scenario():
            await submitter.bus.start()
            await renderer.start()
            result = await submitter.vote(VoteDirection.UP)
            await submitter.bus.stop()
            return result

        assert asyncio.run(scenario()) is None
        submitter.submit.assert_not_called()
        assert queue.load() == []

    def test_accepted_vote_sends_feedback(self, queue):
        submitter, renderer = _submitter(queue, playing="248=12345=0=240")
        submitter.submit = AsyncMock(return_value=True)

        async def scenario():
            await submitter.bus.start()
            await renderer.start()
            result = await submitter.vote(VoteDirection.UP)
            for _ in range(5):
                await asyncio.sleep(0)
            await submitter.bus.stop()
            return result

        assert asyncio.run(scenario()) is True
        submitter.submit.assert_awaited_once_with("248=12345=0=240", VoteDirection.UP)
        assert Event(EventKind.VOTE_FEEDBACK, payload="up") in renderer.received
        assert queue.load() == []

    def test_rejected_vote_is_queued(self, queue):
        submitter, renderer = _submitter(queue, playing="248=12345=0=240")
        submitter.submit = AsyncMock(return_value=False)

        async def scenario():
            await submitter.bus.start()
            await renderer.start()
            result = await submitter.vote(VoteDirection.DOWN)
            for _ in range(5):
                await asyncio.sleep(0)
            await submitter.bus.stop()
            return result

        assert asyncio.run(scenario()) is False
        records = queue.load()
        assert [(r.content_id, r.vote) for r in records] == [("248=12345=0=240", -1)]
        assert not any(e.kind == EventKind.VOTE_FEEDBACK for e in renderer.received)


class TestFlush:
    """Tests for resubmitting queued votes."""

    def _fill(self, queue, ids):
        queue.save([VoteRecord(i, 1, "2024-01-01T00:00:00") for i in ids])

    def test_only_failures_remain(self, queue):
        self._fill(queue, ["a", "b", "c"])
        submitter, _ = _submitter(queue)

        async def submit(content_id, direction):
            await asyncio.sleep(0.01)
            return content_id != "b"

        submitter.submit = submit
        submitted = asyncio.run(submitter.flush_offline_queue())

        assert submitted == 2
        assert [r.content_id for r in queue.load()] == ["b"]

    def test_already_submitted_are_dropped(self, queue):
        queue.save([
            VoteRecord("a", 1, "t", submitted=True),
            VoteRecord("b", -1, "t"),
        ])
        submitter, _ = _submitter(queue)
        submitter.submit = AsyncMock(return_value=True)

        submitted = asyncio.run(submitter.flush_offline_queue())

        assert submitted == 1
        submitter.submit.assert_awaited_once_with("b", VoteDirection.DOWN)
        assert queue.load() == []

    def test_empty_queue(self, queue):
        submitter, _ = _submitter(queue)
        submitter.submit = AsyncMock(return_value=True)

        assert asyncio.run(submitter.flush_offline_queue()) == 0
        submitter.submit.assert_not_called()

    def test_concurrent_flushes_submit_each_vote_once(self, queue):
        self._fill(queue, ["a", "b", "c"])
        submitter, _ = _submitter(queue)
        calls = []

        async def submit(content_id, direction):
            calls.append(content_id)
            await asyncio.sleep(0.01)
            return True

        submitter.submit = submit

        async def scenario():
            return await asyncio.gather(
                submitter.flush_offline_queue(),
                submitter.flush_offline_queue(),
            )

        results = asyncio.run(scenario())

        assert sorted(calls) == ["a", "b", "c"]
        assert sorted(results) == [0, 3]
        assert queue.load() == []

    def test_vote_added_during_flush_is_kept(self, queue):
        self._fill(queue, ["a"])
        submitter, _ = _submitter(queue)

        async def submit(content_id, direction):
            await asyncio.sleep(0.01)
            return False

        submitter.submit = submit

        async def scenario():
            await asyncio.gather(
                submitter.flush_offline_queue(),
                queue.add(VoteRecord("late", 1, "t")),
            )

        asyncio.run(scenario())

        assert sorted(r.content_id for r in queue.load()) == ["a", "late"]


def _fake_session(status=200, error=None):
    response = MagicMock()
    response.status = status
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = context
    return session


class TestSubmit:
    """Tests for the vote HTTP request."""

    def test_http_200_is_accepted(self, queue):
        submitter, _ = _submitter(queue)
        session = _fake_session(200)

        with patch.object(submitter, "_get_session", AsyncMock(return_value=session)):
            ok = asyncio.run(submitter.submit("248=1=0=240", VoteDirection.UP))

        assert ok is True
        args, kwargs = session.get.call_args
        assert args[0] == "https://v3d0.sheepserver.net/cgi/vote.cgi"
        assert kwargs["params"] == {"id": "248=1=0=240", "vote": "1", "u": "abc123"}
        assert kwargs["ssl"] is False

    @pytest.mark.parametrize("status", [403, 500, 302])
    def test_other_status_fails(self, queue, status):
        submitter, _ = _submitter(queue)

        with patch.object(submitter, "_get_session", AsyncMock(return_value=_fake_session(status))):
            assert asyncio.run(submitter.submit("248=1=0=240", VoteDirection.UP)) is False

    @pytest.mark.parametrize("error", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()])
    def test_transport_errors_fail(self, queue, error):
        submitter, _ = _submitter(queue)

        with patch.object(submitter, "_get_session", AsyncMock(return_value=_fake_session(error=error))):
            assert asyncio.run(submitter.submit("248=1=0=240", VoteDirection.DOWN)) is False

    def test_request_raises_typed_error(self, queue):
        submitter, _ = _submitter(queue)

        with patch.object(submitter, "_get_session", AsyncMock(return_value=_fake_session(404))):
            with pytest.raises(VoteSubmissionFailed, match="HTTP 404"):
                asyncio.run(submitter._request_vote("248=1=0=240", VoteDirection.UP))
