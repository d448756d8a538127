"""Binary encoding and decoding of user control events."""

from __future__ import annotations

import struct
from typing import BinaryIO

from rtmpkit.message import (
    UserCtrlEvent,
    UserCtrlEventPingRequest,
    UserCtrlEventPingResponse,
    UserCtrlEventSetBufferLength,
    UserCtrlEventStreamBegin,
    UserCtrlEventStreamDry,
    UserCtrlEventStreamEOF,
    UserCtrlEventStreamIsRecorded,
)

_SET_BUFFER_LENGTH = 3

_STREAM_EVENTS = {
    0: UserCtrlEventStreamBegin,
    1: UserCtrlEventStreamEOF,
    2: UserCtrlEventStreamDry,
    4: UserCtrlEventStreamIsRecorded,
}

_PING_EVENTS = {
    6: UserCtrlEventPingRequest,
    7: UserCtrlEventPingResponse,
}

_STREAM_EVENT_IDS = {cls: code for code, cls in _STREAM_EVENTS.items()}
_PING_EVENT_IDS = {cls: code for code, cls in _PING_EVENTS.items()}


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            if data:
                raise EOFError("unexpected end of user control event")
            raise EOFError("end of user control event data")
        data += chunk
    return bytes(data)


class UserControlEventDecoder:
    """Reads user control events from a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def decode(self) -> UserCtrlEvent:
        """Read and return one event."""
        (event_type,) = struct.unpack(">H", _read_exact(self._stream, 2))

        stream_event = _STREAM_EVENTS.get(event_type)
        if stream_event is not None:
            (stream_id,) = struct.unpack(">I", _read_exact(self._stream, 4))
            return stream_event(stream_id=stream_id)

        if event_type == _SET_BUFFER_LENGTH:
            stream_id, length_ms = struct.unpack(">II", _read_exact(self._stream, 8))
            return UserCtrlEventSetBufferLength(stream_id=stream_id, length_ms=length_ms)

        ping_event = _PING_EVENTS.get(event_type)
        if ping_event is not None:
            (timestamp,) = struct.unpack(">I", _read_exact(self._stream, 4))
            return ping_event(timestamp=timestamp)

        raise ValueError(f"Unsupported type for UserCtrl: TypeID = {event_type}")


class UserControlEventEncoder:
    """Writes user control events to a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def encode(self, event: UserCtrlEvent) -> None:
        """Write one event."""
        kind = type(event)
        try:
            if kind is UserCtrlEventSetBufferLength:
                data = struct.pack(">HII", _SET_BUFFER_LENGTH, event.stream_id, event.length_ms)
            elif kind in _STREAM_EVENT_IDS:
                data = struct.pack(">HI", _STREAM_EVENT_IDS[kind], event.stream_id)
            elif kind in _PING_EVENT_IDS:
                data = struct.pack(">HI", _PING_EVENT_IDS[kind], event.timestamp)
            else:
                raise TypeError(f"Unsupported type for UserCtrl: Type = {kind.__name__}")
        except struct.error as exc:
            raise ValueError(f"User control event field out of range: {exc}") from exc
        self._stream.write(data)