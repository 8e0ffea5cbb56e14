"""
Tests for the gateway session manager.

Every test drives a real `GatewayClient` through fake transports, so the state
machine, heartbeat, reconnect loop and routing run exactly as in production.
"""
import asyncio

import pytest

from kook_gateway.client.gateway_client import GatewayClient
from kook_gateway.shared.config import GatewayOptions
from kook_gateway.shared.errors import (
    DecodeError,
    GatewayConnectionError,
    GatewayResolveError,
    HandshakeError,
    ReconnectExhaustedError,
)
from kook_gateway.shared.models import ConnectionState, Session

from conftest import (
    FakeConnector,
    StaticResolver,
    event_frame,
    hello_frame,
    message_payload,
    system_payload,
    wait_for,
)

QUIET = {"debug", "state", "hello", "ping", "pong"}


class Recorder:
    """Collects every notification a client publishes."""

    def __init__(self, client):
        self.seen = []
        client.events.on_any(lambda name, payload: self.seen.append((name, payload)))

    def payloads(self, name):
        return [payload for seen_name, payload in self.seen if seen_name == name]

    def names(self):
        return [name for name, _ in self.seen if name not in QUIET]

    def errors(self, kind=Exception):
        return [e for e in self.payloads("error") if isinstance(e, kind)]


def make_client(options, resolver, connector):
    client = GatewayClient(options, resolver=resolver, connect_fn=connector, debug_sink=lambda m: None)
    return client, Recorder(client)


class TestHandshake:
    """Resolve, open, HELLO, Established."""

    @pytest.mark.asyncio
    async def test_hello_establishes_session(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        assert client.state is ConnectionState.ESTABLISHED
        assert client.is_connected
        assert client.session_id == "s-1"
        assert client.session.heartbeat_interval_ms == 30000
        assert client.heartbeat.armed
        ready = recorder.payloads("ready")
        assert len(ready) == 1
        assert isinstance(ready[0], Session)
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_transport_is_opened_with_bot_token(self, options, resolver, connector):
        client, _ = make_client(options, resolver, connector)
        await client.connect()

        url, kwargs = connector.calls[0]
        assert url == resolver.url
        assert kwargs["additional_headers"] == {"Authorization": "Bot abc"}
        assert kwargs["ping_interval"] is None
        assert client.gateway_url == resolver.url
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_compression_is_requested_on_the_url(self, resolver, connector):
        options = GatewayOptions(token="abc", compress=True)
        client, _ = make_client(options, resolver, connector)
        await client.connect()

        assert connector.calls[0][0] == resolver.url + "&compress=1"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_state_transitions(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        assert recorder.payloads("state") == [
            ConnectionState.RESOLVING_ENDPOINT,
            ConnectionState.CONNECTING,
            ConnectionState.AWAITING_HANDSHAKE,
            ConnectionState.ESTABLISHED,
        ]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_connect_when_established_is_a_no_op(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()
        await client.connect()

        assert len(connector.calls) == 1
        assert len(recorder.payloads("ready")) == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_duplicate_hello_rearms_heartbeat_only(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.feed(hello_frame("s-1b", heartbeat_interval=45000))
        await wait_for(lambda: len(recorder.payloads("hello")) == 2)

        assert len(recorder.payloads("ready")) == 1
        assert client.state is ConnectionState.ESTABLISHED
        assert client.session_id == "s-1b"
        assert client.heartbeat.interval_ms == 45000
        assert client.heartbeat.armed
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_rejected_hello_is_reported(self, resolver):
        options = GatewayOptions(token="abc", auto_reconnect=False)
        connector = FakeConnector(auto_hello=False)
        client, recorder = make_client(options, resolver, connector)

        task = asyncio.create_task(client.connect())
        await wait_for(lambda: client.state is ConnectionState.AWAITING_HANDSHAKE)
        connector.current.feed(hello_frame(code=40100))
        await wait_for(lambda: recorder.errors(HandshakeError))
        assert not task.done()

        connector.current.drop()
        with pytest.raises(GatewayConnectionError):
            await task
        await wait_for(lambda: client.state is ConnectionState.FAILED)
        assert len(recorder.errors(ReconnectExhaustedError)) == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_resolve_failure_raises_and_stays_idle(self, options, connector):
        resolver = StaticResolver(error=GatewayResolveError("invalid token", code=401))
        client, recorder = make_client(options, resolver, connector)

        with pytest.raises(GatewayResolveError):
            await client.connect()

        assert client.state is ConnectionState.IDLE
        assert connector.calls == []
        assert recorder.errors(GatewayResolveError)

    @pytest.mark.asyncio
    async def test_context_manager(self, options, resolver, connector):
        async with GatewayClient(options, resolver=resolver, connect_fn=connector) as client:
            assert client.state is ConnectionState.ESTABLISHED
        assert client.state is ConnectionState.IDLE


class TestEvents:
    """Sequence tracking and category publishing."""

    @pytest.mark.asyncio
    async def test_message_is_published(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.feed(event_frame(message_payload(content="hello"), sn=1))
        await wait_for(lambda: recorder.payloads("message"))

        assert recorder.names()[-2:] == ["event", "message"]
        assert recorder.payloads("message")[0].content == "hello"
        assert client.last_sequence == 1
        assert client.events_dispatched == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_sequence_never_moves_back(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        for sn in (3, 1, 4):
            connector.current.feed(event_frame(message_payload(), sn=sn))
        await wait_for(lambda: len(recorder.payloads("event")) == 3)

        assert client.last_sequence == 4
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_pinned_message(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.feed(event_frame(system_payload("pinned_message", {"msg_id": "m-9"}), sn=2))
        await wait_for(lambda: recorder.payloads("system-event"))

        assert recorder.names()[-3:] == ["event", "pinned-message", "system-event"]
        event = recorder.payloads("pinned-message")[0]
        assert event.system.body.msg_id == "m-9"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_unmapped_system_event(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.feed(event_frame(system_payload("added_sticker", {"id": "s1"})))
        await wait_for(lambda: recorder.payloads("system-event"))

        assert recorder.names()[-2:] == ["event", "system-event"]
        assert "Unmapped system event sub-type: 'added_sticker'" in recorder.payloads("debug")
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_system_body_with_unexpected_field_types(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        body = {"msg_id": "m1", "channel_type": "GROUP"}
        connector.current.feed(event_frame(system_payload("pinned_message", body), sn=5))
        await wait_for(lambda: recorder.payloads("system-event"))

        assert recorder.names()[-3:] == ["event", "pinned-message", "system-event"]
        event = recorder.payloads("pinned-message")[0]
        assert event.system.body.model_dump() == body
        assert recorder.errors() == []
        assert client.last_sequence == 5
        assert any(m.startswith("Untyped pinned_message body") for m in recorder.payloads("debug"))
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_person_presence(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.feed(event_frame(message_payload(type=8, channel_type="PERSON")))
        await wait_for(lambda: recorder.payloads("member-online"))

        assert recorder.payloads("message") == []
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_decode_error_keeps_connection(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.feed("{not json")
        connector.current.feed(event_frame(message_payload(), sn=1))
        await wait_for(lambda: recorder.payloads("message"))

        assert len(recorder.errors(DecodeError)) == 1
        assert client.stats["decode_errors"] == 1
        assert client.state is ConnectionState.ESTABLISHED
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_unhandled_error_does_not_raise(self, options, resolver, connector):
        client = GatewayClient(options, resolver=resolver, connect_fn=connector, debug_sink=lambda m: None)
        await client.connect()

        connector.current.feed("{not json")
        await wait_for(lambda: client.stats["decode_errors"] == 1)
        assert client.state is ConnectionState.ESTABLISHED
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_pong_is_published(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.feed('{"s":3,"d":{}}')
        await wait_for(lambda: recorder.payloads("pong"))
        await client.disconnect()


class TestHeartbeat:
    """PINGs carry the last sequence number."""

    @pytest.mark.asyncio
    async def test_ping_carries_last_sequence(self, options, resolver):
        connector = FakeConnector(heartbeat_interval=20)
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.feed(event_frame(message_payload(), sn=5))
        await wait_for(lambda: {"s": 2, "d": {}, "sn": 5} in connector.current.sent_signals())

        assert client.stats["heartbeats_sent"] >= 1
        assert 5 in recorder.payloads("ping")
        await client.disconnect()


class TestReconnect:
    """Drops, the RECONNECT signal and the attempt ceiling."""

    @pytest.mark.asyncio
    async def test_drop_recovers_with_cached_endpoint(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.drop()
        await wait_for(lambda: len(recorder.payloads("ready")) == 2)

        assert client.state is ConnectionState.ESTABLISHED
        assert client.session_id == "s-2"
        assert client.reconnect_count == 1
        assert client.policy.attempts == 0
        assert resolver.calls == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_drop_exhausts_attempts(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.fail = True
        connector.current.drop()
        await wait_for(lambda: client.state is ConnectionState.FAILED)

        assert len(connector.calls) == 1 + 3
        assert client.reconnect_count == 3
        assert len(recorder.errors(OSError)) == 3
        fatal = recorder.errors(ReconnectExhaustedError)
        assert len(fatal) == 1
        assert fatal[0].attempts == 3
        assert str(fatal[0]) == "Max reconnect attempts reached (3)"

        await asyncio.sleep(0.02)
        assert len(connector.calls) == 4

    @pytest.mark.asyncio
    async def test_attempts_are_spaced_by_the_fixed_delay(self, resolver, connector):
        options = GatewayOptions(token="abc", reconnect_interval_ms=50, max_reconnect_attempts=3)
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.fail = True
        connector.current.drop()
        await wait_for(lambda: client.state is ConnectionState.FAILED)

        attempt_times = connector.call_times[1:]
        assert len(attempt_times) == 3
        gaps = [later - earlier for earlier, later in zip(attempt_times, attempt_times[1:])]
        assert all(gap >= 0.045 for gap in gaps)
        assert all(gap < 1.0 for gap in gaps)
        assert client.policy.delay_s == 0.05

    @pytest.mark.asyncio
    async def test_open_timeout_feeds_the_reconnect_policy(self, options, resolver):
        calls = []

        async def timing_out_connect(url, **kwargs):
            calls.append(url)
            raise asyncio.TimeoutError()

        client, recorder = make_client(options, resolver, timing_out_connect)

        with pytest.raises(asyncio.TimeoutError):
            await client.connect()
        await wait_for(lambda: client.state is ConnectionState.FAILED)

        assert len(calls) == 4
        assert len(recorder.errors(ReconnectExhaustedError)) == 1

    @pytest.mark.asyncio
    async def test_initial_failure_raises_and_retries(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        connector.fail = True

        with pytest.raises(OSError):
            await client.connect()
        await wait_for(lambda: client.state is ConnectionState.FAILED)

        assert len(connector.calls) == 4
        assert len(recorder.errors(ReconnectExhaustedError)) == 1

    @pytest.mark.asyncio
    async def test_connect_after_failed(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()
        connector.fail = True
        connector.current.drop()
        await wait_for(lambda: client.state is ConnectionState.FAILED)

        connector.fail = False
        await client.connect()

        assert client.state is ConnectionState.ESTABLISHED
        assert client.policy.attempts == 0
        assert resolver.calls == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_auto_reconnect_off_fails_on_drop(self, resolver, connector):
        options = GatewayOptions(token="abc", auto_reconnect=False)
        client, recorder = make_client(options, resolver, connector)
        await client.connect()

        connector.current.drop()
        await wait_for(lambda: client.state is ConnectionState.FAILED)

        assert len(connector.calls) == 1
        assert len(recorder.errors(ReconnectExhaustedError)) == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect_signal(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()
        first = connector.current

        first.feed('{"s":4,"d":{"code":41008,"err":"reconnect requested"}}')
        await wait_for(lambda: len(recorder.payloads("ready")) == 2)

        assert first.closed
        assert len(connector.transports) == 2
        assert resolver.calls == 1
        assert client.session_id == "s-2"
        assert client.state is ConnectionState.ESTABLISHED
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_stale_transport_close_is_ignored(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()
        first = connector.current
        first.feed('{"s":4,"d":{}}')
        await wait_for(lambda: len(recorder.payloads("ready")) == 2)

        first.drop()
        await asyncio.sleep(0.02)

        assert client.state is ConnectionState.ESTABLISHED
        assert len(connector.transports) == 2
        await client.disconnect()


class TestDisconnect:
    """Caller-initiated close always ends in Idle."""

    @pytest.mark.asyncio
    async def test_disconnect_from_established(self, options, resolver, connector):
        client, recorder = make_client(options, resolver, connector)
        await client.connect()
        transport = connector.current

        await client.disconnect()

        assert client.state is ConnectionState.IDLE
        assert transport.closed
        assert client.session is None
        assert not client.heartbeat.armed
        assert recorder.payloads("stopped") == [None]
        await asyncio.sleep(0.02)
        assert len(connector.calls) == 1

    @pytest.mark.asyncio
    async def test_disconnect_while_reconnecting(self, resolver, connector):
        options = GatewayOptions(token="abc", reconnect_interval_ms=60000)
        client, _ = make_client(options, resolver, connector)
        await client.connect()

        connector.current.drop()
        await wait_for(lambda: client.state is ConnectionState.RECONNECTING)
        await client.disconnect()

        assert client.state is ConnectionState.IDLE
        await asyncio.sleep(0.02)
        assert len(connector.calls) == 1

    @pytest.mark.asyncio
    async def test_disconnect_while_awaiting_handshake(self, options, resolver):
        connector = FakeConnector(auto_hello=False)
        client, recorder = make_client(options, resolver, connector)

        task = asyncio.create_task(client.connect())
        await wait_for(lambda: client.state is ConnectionState.AWAITING_HANDSHAKE)
        await client.disconnect()

        with pytest.raises(GatewayConnectionError):
            await task
        assert client.state is ConnectionState.IDLE
        assert recorder.errors() == []
        await asyncio.sleep(0.02)
        assert len(connector.calls) == 1

    @pytest.mark.asyncio
    async def test_disconnect_while_transport_is_opening(self, options, resolver, connector):
        connector.gate = asyncio.Event()
        client, recorder = make_client(options, resolver, connector)

        task = asyncio.create_task(client.connect())
        await wait_for(lambda: client.state is ConnectionState.CONNECTING and connector.calls)
        await client.disconnect()
        assert client.state is ConnectionState.IDLE

        connector.gate.set()
        with pytest.raises(GatewayConnectionError):
            await task
        await asyncio.sleep(0.02)

        assert client.state is ConnectionState.IDLE
        assert client.session is None
        assert connector.current.closed
        assert recorder.payloads("ready") == []
        assert recorder.errors() == []

    @pytest.mark.asyncio
    async def test_disconnect_while_resolving(self, options, resolver, connector):
        resolver.gate = asyncio.Event()
        client, recorder = make_client(options, resolver, connector)

        task = asyncio.create_task(client.connect())
        await wait_for(lambda: client.state is ConnectionState.RESOLVING_ENDPOINT and resolver.calls)
        await client.disconnect()

        resolver.gate.set()
        with pytest.raises(GatewayConnectionError):
            await task
        await asyncio.sleep(0.02)

        assert client.state is ConnectionState.IDLE
        assert connector.calls == []
        assert recorder.errors() == []

    @pytest.mark.asyncio
    async def test_connect_after_interrupted_connect(self, options, resolver, connector):
        connector.gate = asyncio.Event()
        client, _ = make_client(options, resolver, connector)

        first = asyncio.create_task(client.connect())
        await wait_for(lambda: connector.calls)
        await client.disconnect()
        connector.gate.set()
        with pytest.raises(GatewayConnectionError):
            await first

        await client.connect()
        assert client.state is ConnectionState.ESTABLISHED
        assert client.session_id == "s-2"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_aclose_closes_resolver(self, options, resolver, connector):
        client, _ = make_client(options, resolver, connector)
        await client.connect()
        await client.aclose()

        assert resolver.closed
        assert client.state is ConnectionState.IDLE
