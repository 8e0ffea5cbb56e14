"""
MODULE OVERVIEW:
The mock gateway's connection registry.

WHAT IS HAPPENING HERE:
This single object holds every open gateway websocket together with its own
sequence counter. When `broadcast_event()` is called (by the generators) each
connection receives the event wrapped in an EVENT signal with the next `sn`
for that connection, exactly like a real gateway numbers its frames per session.
"""

from typing import Dict
from datetime import datetime, timezone
from fastapi.websockets import WebSocket
from loguru import logger

from kook_gateway.shared import codec
from kook_gateway.shared.models import MockGatewayStats, SignalType


class GatewayConnectionManager:
    def __init__(self):
        self.active_websockets: Dict[str, WebSocket] = {}
        self.sequences: Dict[str, int] = {}
        self.total_events_dispatched = 0
        self.startup_time = datetime.now(timezone.utc)

    async def connect(self, session_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_websockets[session_id] = websocket
        self.sequences[session_id] = 0
        logger.info(f"session_id={session_id} role=mock-gateway event=connect reason=accepted")

    def disconnect(self, session_id: str):
        if session_id in self.active_websockets:
            del self.active_websockets[session_id]
            self.sequences.pop(session_id, None)
            logger.info(f"session_id={session_id} role=mock-gateway event=disconnect reason=cleanup")

    async def send_hello(self, session_id: str, heartbeat_interval_ms: int):
        hello = codec.make_signal(
            SignalType.HELLO,
            {"code": 0, "session_id": session_id, "heartbeat_interval": heartbeat_interval_ms},
        )
        await self.active_websockets[session_id].send_text(codec.encode(hello))

    async def broadcast_event(self, payload: dict):
        self.total_events_dispatched += 1
        disconnected = []

        for session_id, ws in self.active_websockets.items():
            self.sequences[session_id] += 1
            frame = codec.encode(codec.make_signal(SignalType.EVENT, payload, self.sequences[session_id]))
            try:
                await ws.send_text(frame)
            except Exception as e:
                logger.warning(f"session_id={session_id} role=mock-gateway event=error reason='{e}'")
                disconnected.append(session_id)

        for session_id in disconnected:
            self.disconnect(session_id)

    async def broadcast_reconnect(self) -> int:
        """Asks every client to reconnect. Returns how many were told."""
        frame = codec.encode(codec.make_signal(SignalType.RECONNECT, {"code": 41008, "err": "reconnect requested"}))
        notified = 0
        for session_id, ws in list(self.active_websockets.items()):
            try:
                await ws.send_text(frame)
                notified += 1
            except Exception as e:
                logger.warning(f"session_id={session_id} role=mock-gateway event=error reason='{e}'")
                self.disconnect(session_id)
        return notified

    def get_stats(self) -> MockGatewayStats:
        return MockGatewayStats(
            active_connections=len(self.active_websockets),
            total_events_dispatched=self.total_events_dispatched,
            uptime_s=(datetime.now(timezone.utc) - self.startup_time).total_seconds(),
            server_time=datetime.now(timezone.utc)
        )


# Global singleton instance
manager = GatewayConnectionManager()
