"""
MODULE OVERVIEW:
The thin bot facade.

WHAT IS HAPPENING HERE:
The bot does not implement a protocol itself. It builds a `GatewayClient`,
re-publishes every category the client emits on its own dispatcher, and turns
the client's `ready` into a debug line so that the bot's `ready` fires once,
after `start()` has fully connected.
"""
from typing import Any

from loguru import logger

from kook_gateway.client.gateway_client import ConnectFn, GatewayClient
from kook_gateway.client.resolver import GatewayResolver
from kook_gateway.shared.config import GatewayOptions
from kook_gateway.shared.errors import GatewayError
from kook_gateway.shared.events import EventDispatcher, Listener


class KookBot:
    def __init__(
        self,
        options: GatewayOptions,
        resolver: GatewayResolver | None = None,
        connect_fn: ConnectFn | None = None,
    ):
        self.options = options
        self.events = EventDispatcher()
        self.client: GatewayClient | None = None
        self.is_running = False
        self._resolver = resolver
        self._connect_fn = connect_fn

    def on(self, name: str, fn: Listener | None = None):
        return self.events.on(name, fn)

    def once(self, name: str, fn: Listener) -> Listener:
        return self.events.once(name, fn)

    def off(self, name: str, fn: Listener) -> None:
        self.events.off(name, fn)

    async def start(self) -> None:
        if self.is_running:
            raise GatewayError("Bot is already running")

        # A client left over from a failed start() is still retrying in the
        # background; reconnect it instead of building a second session.
        if self.client is None:
            self.client = GatewayClient(self.options, resolver=self._resolver, connect_fn=self._connect_fn)
            self.client.events.on_any(self._forward)
        await self.client.connect()

        self.is_running = True
        self.events.emit("ready", self.client.session)

    async def stop(self) -> None:
        if self.client is None:
            return
        await self.client.disconnect()
        self.client = None
        self.is_running = False

    def _forward(self, name: str, payload: Any) -> None:
        if name == "ready":
            self.events.emit("debug", "WebSocket ready")
            return
        if self.events.emit(name, payload) == 0 and name == "error":
            logger.error(f"Unhandled bot error: {payload}")
