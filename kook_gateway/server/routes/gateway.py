"""
MODULE OVERVIEW:
The mock gateway routes.

WHAT IS HAPPENING HERE:
`/api/v3/gateway/index` answers the resolve call with the same envelope the
real API uses and points the client at our own websocket. `/gateway` upgrades
to a websocket, greets with HELLO, answers every PING with a PONG and otherwise
just stays open for broadcasts. `/admin/reconnect` pushes a RECONNECT signal
so the client's forced-reconnect path can be watched live.
"""
import uuid

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from loguru import logger

from kook_gateway.server.connection_manager import manager
from kook_gateway.shared import codec
from kook_gateway.shared.config import settings
from kook_gateway.shared.errors import DecodeError
from kook_gateway.shared.log_utils import log_connection
from kook_gateway.shared.models import SignalType

router = APIRouter()


@router.get("/api/v3/gateway/index")
async def gateway_index(request: Request, compress: int = Query(0)):
    base = str(request.base_url).rstrip("/")
    ws_base = base.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
    return {"code": 0, "message": "", "data": {"url": f"{ws_base}/gateway"}}


@router.websocket("/gateway")
async def gateway_endpoint(websocket: WebSocket, compress: int = Query(0)):
    session_id = str(uuid.uuid4())
    await manager.connect(session_id, websocket)
    log_connection("mock-gateway:connect", session_id, {"compress": compress})
    await manager.send_hello(session_id, settings.MOCK_HEARTBEAT_INTERVAL_MS)

    try:
        while True:
            text_data = await websocket.receive_text()
            try:
                signal = codec.decode(text_data)
            except DecodeError as e:
                logger.warning(f"session_id={session_id} sent an invalid frame: {e}")
                continue
            if signal.kind is SignalType.PING:
                await websocket.send_text(codec.encode(codec.make_signal(SignalType.PONG)))
            else:
                logger.debug(f"session_id={session_id} sent signal {signal.signal_type}")
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(session_id)
        log_connection("mock-gateway:disconnect", session_id)


@router.post("/admin/reconnect")
async def request_reconnect():
    notified = await manager.broadcast_reconnect()
    return {"status": "ok", "notified": notified}
