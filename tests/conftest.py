"""
Shared fakes for the gateway tests.

The session manager only needs three things from the outside world: a resolver
with an async `resolve()`, a connect function returning a transport, and a
transport that can be iterated, sent to and closed. The fakes below stand in
for all three so no test touches the network.
"""
import asyncio
import json

import pytest
from websockets.protocol import State

from kook_gateway.shared.config import GatewayOptions

_CLOSED = object()


def hello_frame(session_id="s-1", heartbeat_interval=30000, code=0):
    return json.dumps({"s": 1, "d": {"code": code, "session_id": session_id, "heartbeat_interval": heartbeat_interval}})


def event_frame(payload, sn=None):
    frame = {"s": 0, "d": payload}
    if sn is not None:
        frame["sn"] = sn
    return json.dumps(frame)


def message_payload(type=1, channel_type="GROUP", content="hi", **extra):
    return {
        "channel_type": channel_type,
        "type": type,
        "target_id": "1000",
        "author_id": "2000",
        "content": content,
        "extra": extra or {"type": type},
        "msg_id": "m-1",
        "msg_timestamp": 1700000000000,
        "nonce": "",
    }


def system_payload(sub_type, body=None):
    payload = message_payload(type=255, content="[system message]")
    payload["extra"] = {"type": sub_type, "body": body or {}}
    return payload


class FakeTransport:
    """An in-memory websocket: frames fed by the test come out of `async for`."""

    def __init__(self):
        self.state = State.OPEN
        self.sent = []
        self.closed = False
        self._inbox = asyncio.Queue()

    def feed(self, frame):
        self._inbox.put_nowait(frame)

    def drop(self):
        """Simulates the server going away."""
        self.state = State.CLOSED
        self._inbox.put_nowait(_CLOSED)

    async def send(self, frame):
        self.sent.append(frame)

    async def close(self):
        self.closed = True
        self.state = State.CLOSED
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._inbox.get()
        if frame is _CLOSED:
            raise StopAsyncIteration
        return frame

    def sent_signals(self):
        return [json.loads(frame) for frame in self.sent]


class FakeConnector:
    """Replacement for `websockets.asyncio.client.connect`."""

    def __init__(self, auto_hello=True, heartbeat_interval=30000):
        self.auto_hello = auto_hello
        self.heartbeat_interval = heartbeat_interval
        self.calls = []
        self.call_times = []
        self.transports = []
        self.fail = False
        # When set, each call waits for it before returning.
        self.gate = None

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        self.call_times.append(asyncio.get_running_loop().time())
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise OSError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        if self.auto_hello:
            transport.feed(hello_frame(f"s-{len(self.transports)}", self.heartbeat_interval))
        return transport

    @property
    def current(self):
        return self.transports[-1]


class StaticResolver:
    def __init__(self, url="wss://gateway.test/gateway?token=abc", error=None):
        self.url = url
        self.error = error
        self.calls = 0
        self.closed = False
        self.gate = None

    async def resolve(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.url

    async def aclose(self):
        self.closed = True


async def wait_for(condition, timeout=2.0):
    """Polls `condition` until it holds or `timeout` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def options():
    return GatewayOptions(token="abc", reconnect_interval_ms=0, max_reconnect_attempts=3)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def resolver():
    return StaticResolver()
