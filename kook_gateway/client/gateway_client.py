"""
MODULE OVERVIEW:
The gateway session manager.

WHAT IS HAPPENING HERE:
This is the only object holding mutable session state: the cached endpoint,
the live transport, the current `Session` and the lifecycle state.

    Idle -> ResolvingEndpoint -> Connecting -> AwaitingHandshake -> Established
    Established -> Reconnecting -> Connecting ...        (drop or RECONNECT signal)
    Reconnecting -> Failed                               (policy gave up)
    any -> Closing -> Idle                               (disconnect())

Everything runs on one event loop: a reader task per transport, one heartbeat
task, one reconnect task. Handlers never run concurrently, so there is no
locking. Stale transports are recognised by identity (`ws is not self._ws`)
and their late close notifications are ignored.

The endpoint is resolved once and reused for every reconnect. Every reconnect
performs a fresh handshake; RESUME is never sent.
"""
import asyncio
from typing import Any, Awaitable, Callable

import websockets
from loguru import logger
from websockets.asyncio.client import connect as ws_connect
from websockets.protocol import State

from kook_gateway.client.base_client import BaseConnectionClient
from kook_gateway.client.event_router import RAW_EVENT, EventRouter
from kook_gateway.client.heartbeat import HeartbeatScheduler
from kook_gateway.client.reconnect import ReconnectDecision, ReconnectPolicy
from kook_gateway.client.resolver import GatewayResolver
from kook_gateway.shared import codec
from kook_gateway.shared.client_utils import utc_now_iso
from kook_gateway.shared.config import GatewayOptions
from kook_gateway.shared.errors import (
    DecodeError,
    GatewayConnectionError,
    GatewayResolveError,
    HandshakeError,
    ReconnectExhaustedError,
)
from kook_gateway.shared.log_utils import loguru_debug_sink
from kook_gateway.shared.models import (
    ConnectionState,
    Session,
    Signal,
    SignalType,
    SystemEvent,
    UnrecognizedSystemEvent,
)

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, websockets.WebSocketException, GatewayConnectionError)

ConnectFn = Callable[..., Awaitable[Any]]


class GatewayClient(BaseConnectionClient):
    protocol_name: str = "websocket"

    def __init__(
        self,
        options: GatewayOptions,
        resolver: GatewayResolver | None = None,
        connect_fn: ConnectFn | None = None,
        debug_sink: Callable[[str], None] | None = None,
        client_id: str = "gateway",
    ):
        super().__init__(client_id)
        self.options = options
        self.resolver = resolver or GatewayResolver(options.token, compress=options.compress)
        self.router = EventRouter()
        self.policy = ReconnectPolicy(
            auto_reconnect=options.auto_reconnect,
            max_attempts=options.max_reconnect_attempts,
            delay_ms=options.reconnect_interval_ms,
        )
        self.heartbeat = HeartbeatScheduler(self._transport_open, debug=self._debug)
        self.session: Session | None = None

        self._connect_fn = connect_fn or ws_connect
        self._debug_sink = debug_sink or loguru_debug_sink
        self._state = ConnectionState.IDLE
        self._gateway_url: str | None = None
        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._handshake: asyncio.Future | None = None
        self._manual_close = False
        # Bumped by every disconnect(); an await that spans a bump is abandoned.
        self._close_epoch = 0
        self._background: set[asyncio.Task] = set()

    async def __aenter__(self) -> "GatewayClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # ==========================
    # OBSERVABLES
    # ==========================
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def gateway_url(self) -> str | None:
        return self._gateway_url

    @property
    def session_id(self) -> str | None:
        return self.session.session_id if self.session else None

    @property
    def last_sequence(self) -> int:
        return self.session.last_sequence if self.session else 0

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.ESTABLISHED and self._transport_open()

    # ==========================
    # LIFECYCLE
    # ==========================
    async def connect(self) -> None:
        """
        Resolves (once), opens the transport and waits for HELLO.
        Returns when the session is established; raises if the transport fails
        before the handshake. A failed attempt also hands over to the reconnect
        policy, so the caller does not need to retry by hand.
        """
        if self._state is ConnectionState.ESTABLISHED:
            self._debug("connect() ignored: session already established")
            return

        self._manual_close = False
        self._cancel_reconnect()
        self.policy.reset()
        stale = self._release_transport()
        if stale is not None:
            await self._close_transport(stale)

        epoch = self._close_epoch
        if self._gateway_url is None:
            self._set_state(ConnectionState.RESOLVING_ENDPOINT)
            try:
                url = await self.resolver.resolve()
            except GatewayResolveError as e:
                if epoch == self._close_epoch:
                    self._set_state(ConnectionState.IDLE)
                    self._report_error(e)
                raise
            self._gateway_url = url
            if epoch != self._close_epoch:
                raise GatewayConnectionError("connection closed by caller")
            self._debug(f"Got gateway URL: {self._gateway_url}")

        try:
            await self._open()
        except TRANSPORT_ERRORS as e:
            if epoch == self._close_epoch and not self._manual_close:
                self._report_error(e)
                self._start_reconnect()
            raise

    async def disconnect(self) -> None:
        """Caller-initiated close. Always ends in Idle and never reconnects."""
        self._manual_close = True
        self._close_epoch += 1
        self._set_state(ConnectionState.CLOSING)
        self._cancel_reconnect()
        ws, _ = self._drop_transport(GatewayConnectionError("connection closed by caller"))
        if ws is not None:
            await self._close_transport(ws)
        self.session = None
        self._set_state(ConnectionState.IDLE)
        self._debug("Gateway session closed")
        self._emit("stopped")

    async def aclose(self) -> None:
        await self.disconnect()
        await self.resolver.aclose()

    async def _open(self) -> None:
        url = self._connection_url()
        epoch = self._close_epoch
        self._set_state(ConnectionState.CONNECTING)
        ws = await self._connect_fn(
            url,
            additional_headers={"Authorization": f"Bot {self.options.token}"},
            ping_interval=None,
        )
        if epoch != self._close_epoch:
            await self._close_transport(ws)
            raise GatewayConnectionError("connection closed by caller")
        self._ws = ws
        self._set_state(ConnectionState.AWAITING_HANDSHAKE)
        self._debug("WebSocket connection opened")

        handshake = asyncio.get_running_loop().create_future()
        self._handshake = handshake
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        try:
            await handshake
        except asyncio.CancelledError:
            if self._ws is ws:
                self._release_transport()
            self._spawn(self._close_transport(ws))
            raise
        finally:
            if self._handshake is handshake:
                self._handshake = None

    def _connection_url(self) -> str:
        url = self._gateway_url or ""
        if self.options.compress:
            url += "&compress=1" if "?" in url else "?compress=1"
        return url

    # ==========================
    # TRANSPORT
    # ==========================
    def _transport_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def _read_loop(self, ws: Any) -> None:
        reason: Exception | None = None
        try:
            async for raw in ws:
                if ws is not self._ws:
                    break
                self._handle_frame(raw)
        except websockets.ConnectionClosed as e:
            reason = e
        self._on_transport_closed(ws, reason)

    def _on_transport_closed(self, ws: Any, reason: Exception | None) -> None:
        if ws is not self._ws:
            return
        self._debug(f"WebSocket closed: {reason or 'connection ended'}")
        _, handed_over = self._drop_transport(
            GatewayConnectionError(f"connection closed before handshake: {reason}")
        )
        if handed_over or self._manual_close:
            return
        self._start_reconnect()

    def _drop_transport(self, handshake_error: Exception) -> tuple[Any, bool]:
        """
        Detaches the live transport. If a connect attempt is still waiting for
        HELLO it is failed with `handshake_error`; that attempt's owner (the
        caller of connect() or the reconnect loop) decides what happens next.
        """
        ws = self._release_transport()
        handshake = self._handshake
        if handshake is not None and not handshake.done():
            handshake.set_exception(handshake_error)
            return ws, True
        return ws, False

    def _release_transport(self) -> Any:
        self.heartbeat.stop()
        ws, self._ws = self._ws, None
        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        self.session = None
        return ws

    async def _close_transport(self, ws: Any) -> None:
        try:
            await ws.close()
        except (websockets.WebSocketException, OSError) as e:
            self._debug(f"Error while closing transport: {e}")

    async def _send_ping(self) -> None:
        ws = self._ws
        if ws is None:
            return
        sn = self.last_sequence
        await ws.send(codec.encode(codec.make_ping(sn)))
        self.stats["heartbeats_sent"] += 1
        self._emit("ping", sn)

    # ==========================
    # RECONNECT
    # ==========================
    def _start_reconnect(self) -> None:
        if self._manual_close:
            return
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_loop(self) -> None:
        while True:
            if self.policy.decide(self._manual_close) is ReconnectDecision.GIVE_UP:
                if not self._manual_close:
                    self._set_state(ConnectionState.FAILED)
                    self._report_error(ReconnectExhaustedError(self.policy.attempts))
                return

            attempt = self.policy.record_attempt()
            self.stats["reconnect_count"] += 1
            self._debug(f"Reconnecting... Attempt {attempt}/{self.policy.max_attempts}")
            await asyncio.sleep(self.policy.delay_s)
            if self._manual_close:
                return

            try:
                await self._open()
                return
            except TRANSPORT_ERRORS as e:
                if self._manual_close:
                    return
                self._report_error(e)
                self._set_state(ConnectionState.RECONNECTING)

    # ==========================
    # INBOUND SIGNALS
    # ==========================
    def _handle_frame(self, raw: str | bytes) -> None:
        self.stats["frames_received"] += 1
        try:
            signal = codec.decode(raw, compressed=self.options.compress)
        except DecodeError as e:
            self.stats["decode_errors"] += 1
            self._report_error(e)
            return

        self._debug(f"Received signal: {signal.signal_type}")
        kind = signal.kind
        if kind is SignalType.HELLO:
            self._handle_hello(signal)
        elif kind is SignalType.EVENT:
            self._handle_event(signal)
        elif kind is SignalType.PONG:
            self._emit("pong", signal.payload)
        elif kind is SignalType.RECONNECT:
            self._handle_reconnect()
        else:
            self._debug(f"Unknown signal type: {signal.signal_type}")

    def _handle_hello(self, signal: Signal) -> None:
        try:
            hello = codec.decode_hello(signal)
        except HandshakeError as e:
            self.stats["decode_errors"] += 1
            self._report_error(e)
            return
        if hello.code != 0:
            self._report_error(HandshakeError(f"rejected with code {hello.code}", raw=signal.payload))
            return

        first_entry = self._state is not ConnectionState.ESTABLISHED or self.session is None
        if first_entry:
            self.session = Session(session_id=hello.session_id, heartbeat_interval_ms=hello.heartbeat_interval)
        else:
            self.session.session_id = hello.session_id
            self.session.heartbeat_interval_ms = hello.heartbeat_interval

        self.heartbeat.start(hello.heartbeat_interval, self._send_ping)
        self._emit("hello", hello)

        if not first_entry:
            self._debug(f"Repeated HELLO: heartbeat re-armed at {hello.heartbeat_interval}ms")
            return

        self.policy.reset()
        self.stats["connected_at"] = utc_now_iso()
        self._set_state(ConnectionState.ESTABLISHED)
        self._debug(f"Handshake complete: session {hello.session_id}")
        handshake = self._handshake
        if handshake is not None and not handshake.done():
            handshake.set_result(hello)
        self._emit("ready", self.session)

    def _handle_event(self, signal: Signal) -> None:
        if signal.sequence is not None:
            if self.session is None:
                self._debug(f"Event sn={signal.sequence} arrived before handshake")
            elif not self.session.advance(signal.sequence):
                self._debug(f"Stale sn={signal.sequence} ignored (last {self.session.last_sequence})")

        try:
            event = codec.decode_event(signal)
        except DecodeError as e:
            self.stats["decode_errors"] += 1
            self._report_error(e)
            return

        self.stats["events_dispatched"] += 1
        self.stats["last_event_at"] = utc_now_iso()
        self._emit(RAW_EVENT, event)

        categories = self.router.route(event)
        if not categories:
            self._debug(f"No category for event type {event.type}")
        if isinstance(event.system, UnrecognizedSystemEvent):
            self._debug(f"Unmapped system event sub-type: {event.system.sub_type!r}")
        elif isinstance(event.system, SystemEvent) and event.system.body_error:
            self._debug(f"Untyped {event.system.sub_type.value} body: {event.system.body_error}")
        for category in categories:
            self._emit(category, event)

    def _handle_reconnect(self) -> None:
        """The server asked us to reconnect: close our side, then retry like any drop."""
        self._debug("Server requested reconnect")
        ws, handed_over = self._drop_transport(
            GatewayConnectionError("server requested reconnect before handshake")
        )
        if ws is not None:
            self._spawn(self._close_transport(ws))
        if handed_over:
            return
        self._start_reconnect()

    # ==========================
    # NOTIFICATIONS
    # ==========================
    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        self._debug(f"State {previous.value} -> {state.value}")
        self._emit("state", state)

    def _debug(self, message: str) -> None:
        self._debug_sink(message)
        self._emit("debug", message)

    def _report_error(self, error: Exception) -> None:
        if self._emit("error", error) == 0:
            logger.error(f"Unhandled gateway error: {error}")

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
