from abc import ABC, abstractmethod
import asyncio
from typing import Any

from kook_gateway.shared.client_utils import make_client_stats
from kook_gateway.shared.events import EventDispatcher, Listener


class BaseConnectionClient(ABC):
    protocol_name: str = "unknown"

    def __init__(self, client_id: str):
        self.client_id = client_id
        # Owned, never inherited: consumers subscribe through on()/once()/off().
        self.events = EventDispatcher()
        self.stats = make_client_stats()

    @property
    def reconnect_count(self): return self.stats["reconnect_count"]

    @property
    def events_dispatched(self): return self.stats["events_dispatched"]

    def on(self, name: str, fn: Listener | None = None):
        return self.events.on(name, fn)

    def once(self, name: str, fn: Listener) -> Listener:
        return self.events.once(name, fn)

    def off(self, name: str, fn: Listener) -> None:
        self.events.off(name, fn)

    def _emit(self, name: str, payload: Any = None) -> int:
        return self.events.emit(name, payload)

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    async def run(self, duration_s: float = 60.0) -> None:
        """Connects, keeps the session for `duration_s`, then closes it."""
        try:
            await self.connect()
            await asyncio.sleep(duration_s)
        except asyncio.CancelledError:
            pass
        finally:
            await self.disconnect()
