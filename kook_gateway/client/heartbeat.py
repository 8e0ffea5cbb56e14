"""
MODULE OVERVIEW:
The heartbeat scheduler.

WHAT IS HAPPENING HERE:
One asyncio task sleeps for the server-dictated interval and then sends a PING.
`start()` always cancels the previous task first, so re-arming after a second
HELLO can never leave two timers running. A tick that finds the transport
closed (typically a teardown race) is skipped quietly. We do not wait for the
PONG: a dead peer is only noticed when the transport itself closes.
"""
import asyncio
from typing import Awaitable, Callable, Union

import websockets
from loguru import logger

SendFn = Callable[[], Union[None, Awaitable[None]]]


class HeartbeatScheduler:
    def __init__(self, is_open: Callable[[], bool], debug: Callable[[str], None] = logger.debug):
        self._is_open = is_open
        self._debug = debug
        self._task: asyncio.Task | None = None
        self.interval_ms: int | None = None
        self.ticks = 0

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_ms: int, send_fn: SendFn) -> None:
        self.stop()
        self.interval_ms = interval_ms
        self._task = asyncio.create_task(self._run(interval_ms / 1000.0, send_fn))

    def stop(self) -> None:
        if self._task is not None:
            if self._task is not asyncio.current_task():
                self._task.cancel()
            self._task = None

    async def _run(self, interval_s: float, send_fn: SendFn) -> None:
        while True:
            await asyncio.sleep(interval_s)
            # Disarmed from inside a tick; this timer is no longer the live one.
            if self._task is not asyncio.current_task():
                return
            self.ticks += 1
            if not self._is_open():
                self._debug("Skipping ping: WebSocket is not open")
                continue
            try:
                result = send_fn()
                if asyncio.iscoroutine(result):
                    await result
            except (websockets.ConnectionClosed, OSError) as e:
                self._debug(f"Skipping ping: send failed during teardown ({e})")
