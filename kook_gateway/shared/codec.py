"""
MODULE OVERVIEW:
The signal codec: wire frames in, `Signal` values out, and back.

WHAT IS HAPPENING HERE:
Text frames are plain JSON. With compression enabled the gateway sends binary
frames deflated with zlib, so `bytes` are inflated first. Anything that is not
a JSON object with an integer `s` field is a `DecodeError`; the caller reports
it and keeps the connection open. An unknown but well-formed `s` still decodes.
"""
import json
import zlib
from typing import Any

from pydantic import ValidationError

from kook_gateway.shared.errors import DecodeError, HandshakeError
from kook_gateway.shared.models import Event, HelloPayload, Signal, SignalType


def decode(raw: str | bytes, compressed: bool = False) -> Signal:
    try:
        if isinstance(raw, (bytes, bytearray)):
            data = zlib.decompress(raw) if compressed else bytes(raw)
            text = data.decode("utf-8")
        else:
            text = raw
        parsed = json.loads(text)
    except (zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(str(e), raw=raw) from e

    if not isinstance(parsed, dict):
        raise DecodeError("frame is not a JSON object", raw=raw)
    try:
        return Signal.model_validate(parsed)
    except ValidationError as e:
        raise DecodeError(str(e), raw=raw) from e


def encode(signal: Signal) -> str:
    return signal.model_dump_json(by_alias=True, exclude_none=True)


def decode_hello(signal: Signal) -> HelloPayload:
    try:
        return HelloPayload.model_validate(signal.payload)
    except ValidationError as e:
        raise HandshakeError(str(e), raw=signal.payload) from e


def decode_event(signal: Signal) -> Event:
    try:
        return Event.model_validate(signal.payload)
    except ValidationError as e:
        raise DecodeError(str(e), raw=signal.payload) from e


def make_ping(last_sequence: int = 0) -> Signal:
    return Signal(s=SignalType.PING, d={}, sn=last_sequence or None)


def make_signal(signal_type: SignalType, payload: Any = None, sequence: int | None = None) -> Signal:
    return Signal(s=int(signal_type), d=payload if payload is not None else {}, sn=sequence)
