import asyncio
from typing import Any, Dict, List

import pytest

from rendezvous.agent.base import (
    LocalMedia,
    MediaSource,
    PeerConnection,
    PeerConnectionFactory,
    SignalingChannel,
)
from rendezvous.errors import MediaAcquisitionError, NegotiationError
from rendezvous.hub import RelayHub


class FakeChannel:
    def __init__(self, fail: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["type"] == kind]


class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeMediaSource(MediaSource):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.acquired: List[LocalMedia] = []

    async def acquire(self) -> LocalMedia:
        if self.fail:
            raise MediaAcquisitionError("Permission denied")
        media = LocalMedia([FakeTrack("audio"), FakeTrack("video")])
        self.acquired.append(media)
        return media


class FakePeerConnection(PeerConnection):
    def __init__(self, events, auto_connect: bool, fail_on=()):
        self.events = events
        self.auto_connect = auto_connect
        self.fail_on = set(fail_on)
        self.tracks: List[Any] = []
        self.candidates: List[Dict[str, Any]] = []
        self.closed = False
        self._state = "new"
        self._local = None
        self._remote = None

    @property
    def connection_state(self) -> str:
        return self._state

    @property
    def local_description(self):
        return self._local

    @property
    def remote_description(self):
        return self._remote

    def add_track(self, track):
        self.tracks.append(track)

    async def create_offer(self):
        self._check("create_offer")
        return {"type": "offer", "sdp": "v=0 offer"}

    async def create_answer(self):
        self._check("create_answer")
        return {"type": "answer", "sdp": "v=0 answer"}

    async def set_local_description(self, description):
        self._check("set_local_description")
        self._local = description
        await self._maybe_connect()

    async def set_remote_description(self, description):
        self._check("set_remote_description")
        self._remote = description
        await self._maybe_connect()

    async def add_ice_candidate(self, candidate):
        self._check("add_ice_candidate")
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True
        self._state = "closed"

    async def report_state(self, state: str):
        self._state = state
        await self.events.on_connection_state(self, state)

    async def emit_local_candidate(self, candidate):
        await self.events.on_local_candidate(self, candidate)

    async def emit_track(self, track):
        await self.events.on_remote_track(self, track)

    def _check(self, step: str):
        if step in self.fail_on:
            raise NegotiationError(f"{step} failed")

    async def _maybe_connect(self):
        if self.auto_connect and self._local and self._remote and not self.closed:
            await self.report_state("connected")


class FakePeerFactory(PeerConnectionFactory):
    def __init__(self, auto_connect: bool = False, fail_on=()):
        self.auto_connect = auto_connect
        self.fail_on = fail_on
        self.created: List[FakePeerConnection] = []

    def create(self, events) -> PeerConnection:
        pc = FakePeerConnection(events, self.auto_connect, self.fail_on)
        self.created.append(pc)
        return pc


class RecordingSignaling(SignalingChannel):
    def __init__(self, fail: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail

    async def send(self, message):
        if self.fail:
            raise ConnectionError("signaling closed")
        self.sent.append(message)

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["type"] == kind]


class LoopbackClient(SignalingChannel):
    """Joins an agent to an in-process hub.

    Hub -> client traffic is queued and pumped by a task, as a real socket
    would deliver it; client -> hub calls straight into the hub.
    """

    def __init__(self, hub: RelayHub):
        self.hub = hub
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.connection_id = None
        self.agent = None
        self._pump = None

    async def send_json(self, data):
        await self.inbox.put(data)

    async def send(self, message):
        await self.hub.handle_message(self.connection_id, message)

    async def open(self, agent):
        self.agent = agent
        self.connection_id = await self.hub.connect(self)
        self._pump = asyncio.ensure_future(self._run())

    async def close(self):
        if self._pump is not None:
            self._pump.cancel()
        await self.hub.disconnect(self.connection_id)

    async def _run(self):
        while True:
            message = await self.inbox.get()
            await self.agent.handle_message(message)
            self.inbox.task_done()


async def settle(condition, timeout: float = 2.0):
    """Yield to the loop until ``condition()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


@pytest.fixture
def hub():
    return RelayHub()


@pytest.fixture
def signaling():
    return RecordingSignaling()


@pytest.fixture
def media_source():
    return FakeMediaSource()


@pytest.fixture
def peer_factory():
    return FakePeerFactory()


class SlowChannel(FakeChannel):
    """Yields to the loop on every send, like a real socket write."""

    async def send_json(self, data):
        await asyncio.sleep(0)
        await super().send_json(data)


class SlowClosePeerFactory(FakePeerFactory):
    def create(self, events) -> PeerConnection:
        pc = super().create(events)
        close = pc.close

        async def slow_close():
            await asyncio.sleep(0)
            await close()

        pc.close = slow_close
        return pc
