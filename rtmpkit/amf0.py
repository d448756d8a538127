"""AMF0 value encoding and selection of the AMF encoder for a body."""

from __future__ import annotations

import abc
import dataclasses
import datetime as _dt
import enum
import struct
from collections.abc import Mapping
from typing import Any, BinaryIO


class EncodingType(enum.IntEnum):
    """Object encoding used for command and data message bodies."""

    AMF0 = 0
    AMF3 = 3


class AMFConvertible(abc.ABC):
    """A value that can be built from, and turned into, a list of AMF arguments."""

    @classmethod
    @abc.abstractmethod
    def from_args(cls, *args: Any) -> "AMFConvertible":
        """Build an instance from decoded AMF arguments."""

    @abc.abstractmethod
    def to_args(self, encoding: EncodingType) -> list[Any]:
        """Return the AMF arguments that represent this value."""


class AMFDecodeError(ValueError):
    """Raised when AMF0 data is malformed or truncated."""


class UnsupportedEncodingError(ValueError):
    """Raised when an encoder or decoder is requested for an unsupported encoding."""


class ECMAArray(dict):
    """A mapping that is written as an AMF0 ECMA array instead of an object."""


class _Marker(enum.IntEnum):
    NUMBER = 0x00
    BOOLEAN = 0x01
    STRING = 0x02
    OBJECT = 0x03
    MOVIECLIP = 0x04
    NULL = 0x05
    UNDEFINED = 0x06
    REFERENCE = 0x07
    ECMA_ARRAY = 0x08
    OBJECT_END = 0x09
    STRICT_ARRAY = 0x0A
    DATE = 0x0B
    LONG_STRING = 0x0C
    UNSUPPORTED = 0x0D
    RECORDSET = 0x0E
    XML_DOCUMENT = 0x0F
    TYPED_OBJECT = 0x10


_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF


class AMF0Decoder:
    """Reads AMF0 values one at a time from a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def reset(self, stream: BinaryIO) -> None:
        """Continue decoding from another stream."""
        self._stream = stream

    def decode(self) -> Any:
        """Decode and return the next value; raise EOFError at a clean end of data."""
        head = self._stream.read(1)
        if not head:
            raise EOFError("end of AMF0 data")
        return self._decode_value(head[0])

    def _read(self, size: int) -> bytes:
        data = bytearray()
        while len(data) < size:
            chunk = self._stream.read(size - len(data))
            if not chunk:
                raise AMFDecodeError("unexpected end of AMF0 data")
            data += chunk
        return bytes(data)

    def _read_marker(self) -> int:
        return self._read(1)[0]

    def _read_u16(self) -> int:
        return struct.unpack(">H", self._read(2))[0]

    def _read_u32(self) -> int:
        return struct.unpack(">I", self._read(4))[0]

    def _read_utf8(self, length: int) -> str:
        raw = self._read(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AMFDecodeError(f"invalid UTF-8 in AMF0 string: {exc}") from exc

    def _read_properties(self, into: dict) -> dict:
        while True:
            key = self._read_utf8(self._read_u16())
            marker = self._read_marker()
            if marker == _Marker.OBJECT_END and not key:
                return into
            into[key] = self._decode_value(marker)

    def _decode_value(self, marker: int) -> Any:
        if marker == _Marker.NUMBER:
            return struct.unpack(">d", self._read(8))[0]
        if marker == _Marker.BOOLEAN:
            return self._read(1)[0] != 0
        if marker == _Marker.STRING:
            return self._read_utf8(self._read_u16())
        if marker in (_Marker.LONG_STRING, _Marker.XML_DOCUMENT):
            return self._read_utf8(self._read_u32())
        if marker == _Marker.OBJECT:
            return self._read_properties({})
        if marker == _Marker.TYPED_OBJECT:
            self._read_utf8(self._read_u16())
            return self._read_properties({})
        if marker == _Marker.ECMA_ARRAY:
            self._read_u32()
            return self._read_properties(ECMAArray())
        if marker == _Marker.STRICT_ARRAY:
            count = self._read_u32()
            return [self._decode_value(self._read_marker()) for _ in range(count)]
        if marker == _Marker.DATE:
            millis = struct.unpack(">d", self._read(8))[0]
            self._read(2)
            return _dt.datetime.fromtimestamp(millis / 1000.0, tz=_dt.timezone.utc)
        if marker in (_Marker.NULL, _Marker.UNDEFINED, _Marker.UNSUPPORTED):
            return None
        raise AMFDecodeError(f"unsupported AMF0 marker: 0x{marker:02x}")


class AMF0Encoder:
    """Writes Python values to a binary stream as AMF0."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def reset(self, stream: BinaryIO) -> None:
        """Continue encoding into another stream."""
        self._stream = stream

    def encode(self, value: Any) -> None:
        """Encode one value and write it to the stream."""
        out = bytearray()
        self._emit(value, out)
        self._stream.write(bytes(out))

    def _emit(self, value: Any, out: bytearray) -> None:
        if isinstance(value, enum.Enum):
            value = value.value
        if value is None:
            out.append(_Marker.NULL)
        elif isinstance(value, bool):
            out += bytes((_Marker.BOOLEAN, 1 if value else 0))
        elif isinstance(value, (int, float)):
            out.append(_Marker.NUMBER)
            out += struct.pack(">d", float(value))
        elif isinstance(value, str):
            self._emit_string(value, out)
        elif isinstance(value, _dt.datetime):
            out.append(_Marker.DATE)
            out += struct.pack(">dh", value.timestamp() * 1000.0, 0)
        elif isinstance(value, ECMAArray):
            out.append(_Marker.ECMA_ARRAY)
            out += struct.pack(">I", len(value))
            self._emit_properties(value.items(), out)
        elif isinstance(value, Mapping):
            out.append(_Marker.OBJECT)
            self._emit_properties(value.items(), out)
        elif dataclasses.is_dataclass(value) and not isinstance(value, type):
            out.append(_Marker.OBJECT)
            self._emit_properties(
                (
                    (f.metadata.get("amf0", f.name), getattr(value, f.name))
                    for f in dataclasses.fields(value)
                ),
                out,
            )
        elif isinstance(value, (list, tuple)):
            if len(value) > _U32_MAX:
                raise ValueError("AMF0 strict array is too long")
            out.append(_Marker.STRICT_ARRAY)
            out += struct.pack(">I", len(value))
            for item in value:
                self._emit(item, out)
        else:
            raise TypeError(f"cannot encode value of type {type(value).__name__} as AMF0")

    @staticmethod
    def _emit_string(value: str, out: bytearray) -> None:
        raw = value.encode("utf-8")
        if len(raw) <= _U16_MAX:
            out.append(_Marker.STRING)
            out += struct.pack(">H", len(raw))
        elif len(raw) <= _U32_MAX:
            out.append(_Marker.LONG_STRING)
            out += struct.pack(">I", len(raw))
        else:
            raise ValueError("AMF0 string is too long")
        out += raw

    def _emit_properties(self, items, out: bytearray) -> None:
        for key, item in items:
            if not isinstance(key, str):
                raise TypeError(f"AMF0 object keys must be strings, got {type(key).__name__}")
            raw = key.encode("utf-8")
            if len(raw) > _U16_MAX:
                raise ValueError("AMF0 object key is too long")
            out += struct.pack(">H", len(raw))
            out += raw
            self._emit(item, out)
        out += b"\x00\x00"
        out.append(_Marker.OBJECT_END)


def _check_encoding(encoding: Any) -> None:
    if encoding == EncodingType.AMF3:
        raise UnsupportedEncodingError("Unsupported encoding: AMF3")
    if encoding != EncodingType.AMF0:
        raise UnsupportedEncodingError(f"Unknown encoding: {encoding!r}")


def new_amf_decoder(stream: BinaryIO, encoding: EncodingType) -> AMF0Decoder:
    """Return a decoder for the given encoding; only AMF0 is supported."""
    _check_encoding(encoding)
    return AMF0Decoder(stream)


def new_amf_encoder(stream: BinaryIO, encoding: EncodingType) -> AMF0Encoder:
    """Return an encoder for the given encoding; only AMF0 is supported."""
    _check_encoding(encoding)
    return AMF0Encoder(stream)