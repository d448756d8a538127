"""Command and data message bodies, and writing them as AMF values."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Callable

from rtmpkit.amf0 import AMF0Encoder, AMFConvertible, ECMAArray, EncodingType

_UINT32_MAX = 0xFFFFFFFF
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


class NetConnectionConnectCode(str, enum.Enum):
    """Status codes sent in reply to a connect command."""

    SUCCESS = "NetConnection.Connect.Success"
    FAILED = "NetConnection.Connect.Failed"
    CLOSED = "NetConnection.Connect.Closed"


class NetStreamOnStatusLevel(str, enum.Enum):
    """Level of an onStatus notification."""

    STATUS = "status"
    ERROR = "error"


class NetStreamOnStatusCode(str, enum.Enum):
    """Codes of onStatus notifications."""

    CONNECT_SUCCESS = "NetStream.Connect.Success"
    CONNECT_FAILED = "NetStream.Connect.Failed"
    MULTICAST_STREAM_RESET = "NetStream.MulticastStream.Reset"
    PLAY_START = "NetStream.Play.Start"
    PLAY_FAILED = "NetStream.Play.Failed"
    PLAY_COMPLETE = "NetStream.Play.Complete"
    PUBLISH_BAD_NAME = "NetStream.Publish.BadName"
    PUBLISH_FAILED = "NetStream.Publish.Failed"
    PUBLISH_START = "NetStream.Publish.Start"
    UNPUBLISH_SUCCESS = "NetStream.Unpublish.Success"


# Field converters used when mapping decoded AMF objects onto dataclasses.


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return str(value)
    raise TypeError(f"expected a string, got {type(value).__name__}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("expected a number, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    raise TypeError(f"expected a number, got {type(value).__name__}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise TypeError(f"expected a bool, got {type(value).__name__}")


def _to_encoding(value: Any) -> int:
    number = _to_int(value)
    try:
        return EncodingType(number)
    except ValueError:
        return number


def _to_connect_code(value: Any) -> str:
    text = _to_str(value)
    try:
        return NetConnectionConnectCode(text)
    except ValueError:
        return text


def _to_ecma_array(value: Any) -> ECMAArray:
    if isinstance(value, Mapping):
        return ECMAArray(value)
    raise TypeError(f"expected a mapping, got {type(value).__name__}")


def _amf_field(name: str, convert: Callable[[Any], Any], **kwargs: Any) -> Any:
    return field(metadata={"amf0": name, "convert": convert}, **kwargs)


def _map_onto(cls: type, source: Any, what: str) -> Any:
    """Build a dataclass from a decoded AMF object, matching keys by AMF name."""
    if source is None:
        return cls()
    if not isinstance(source, Mapping):
        raise TypeError(f"{what} expects a mapping, got {type(source).__name__}")
    folded = {key.lower(): key for key in source if isinstance(key, str)}
    values = {}
    for f in fields(cls):
        name = f.metadata["amf0"]
        key = name if name in source else folded.get(name.lower())
        if key is None or source[key] is None:
            continue
        try:
            values[f.name] = f.metadata["convert"](source[key])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Failed to mapping {what}: '{name}': {exc}") from exc
    return cls(**values)


def _arg(args: tuple, index: int, what: str) -> Any:
    if index >= len(args):
        raise TypeError(f"{what} expects at least {index + 1} arguments, got {len(args)}")
    return args[index]


def _string_arg(args: tuple, index: int, what: str) -> str:
    value = _arg(args, index, what)
    if not isinstance(value, str):
        raise TypeError(f"{what} args[{index}] must be a string, got {type(value).__name__}")
    return value


def _integer_arg(args: tuple, index: int, what: str, low: int, high: int) -> int:
    value = _arg(args, index, what)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{what} args[{index}] must be a number, got {type(value).__name__}")
    if isinstance(value, float):
        if not value.is_integer():
            raise TypeError(f"{what} args[{index}] must be integral, got {value!r}")
        value = int(value)
    if not low <= value <= high:
        raise ValueError(f"{what} args[{index}] is out of range: {value}")
    return value


def _uint32_arg(args: tuple, index: int, what: str) -> int:
    return _integer_arg(args, index, what, 0, _UINT32_MAX)


def _int64_arg(args: tuple, index: int, what: str) -> int:
    return _integer_arg(args, index, what, _INT64_MIN, _INT64_MAX)


# NetConnection commands


@dataclass
class NetConnectionConnectCommand:
    """Command object sent by a client with connect."""

    app: str = _amf_field("app", _to_str, default="")
    type: str = _amf_field("type", _to_str, default="")
    flash_ver: str = _amf_field("flashVer", _to_str, default="")
    tc_url: str = _amf_field("tcUrl", _to_str, default="")
    fpad: bool = _amf_field("fpad", _to_bool, default=False)
    capabilities: int = _amf_field("capabilities", _to_int, default=0)
    audio_codecs: int = _amf_field("audioCodecs", _to_int, default=0)
    video_codecs: int = _amf_field("videoCodecs", _to_int, default=0)
    video_function: int = _amf_field("videoFunction", _to_int, default=0)
    object_encoding: int = _amf_field(
        "objectEncoding", _to_encoding, default=EncodingType.AMF0
    )


@dataclass
class NetConnectionConnect(AMFConvertible):
    command: NetConnectionConnectCommand = field(default_factory=NetConnectionConnectCommand)

    @classmethod
    def from_args(cls, *args: Any) -> "NetConnectionConnect":
        command = _map_onto(
            NetConnectionConnectCommand, _arg(args, 0, "connect"), "NetConnectionConnect"
        )
        return cls(command=command)

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [self.command]


@dataclass
class NetConnectionConnectResultProperties:
    """Server properties sent in reply to connect."""

    fms_ver: str = _amf_field("fmsVer", _to_str, default="")
    capabilities: int = _amf_field("capabilities", _to_int, default=0)
    mode: int = _amf_field("mode", _to_int, default=0)


@dataclass
class NetConnectionConnectResultInformation:
    """Status information sent in reply to connect."""

    level: str = _amf_field("level", _to_str, default="")
    code: str = _amf_field("code", _to_connect_code, default="")
    description: str = _amf_field("description", _to_str, default="")
    data: ECMAArray = _amf_field("data", _to_ecma_array, default_factory=ECMAArray)


@dataclass
class NetConnectionConnectResult(AMFConvertible):
    properties: NetConnectionConnectResultProperties = field(
        default_factory=NetConnectionConnectResultProperties
    )
    information: NetConnectionConnectResultInformation = field(
        default_factory=NetConnectionConnectResultInformation
    )

    @classmethod
    def from_args(cls, *args: Any) -> "NetConnectionConnectResult":
        properties = _arg(args, 0, "connect result")
        information = _arg(args, 1, "connect result")
        if not isinstance(properties, Mapping):
            raise TypeError("connect result properties must be a mapping")
        if not isinstance(information, Mapping):
            raise TypeError("connect result information must be a mapping")
        return cls(
            properties=_map_onto(
                NetConnectionConnectResultProperties,
                properties,
                "NetConnectionConnectResultProperties",
            ),
            information=_map_onto(
                NetConnectionConnectResultInformation,
                information,
                "NetConnectionConnectResultInformation",
            ),
        )

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [self.properties, self.information]


@dataclass
class NetConnectionCreateStream(AMFConvertible):
    @classmethod
    def from_args(cls, *args: Any) -> "NetConnectionCreateStream":
        return cls()

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None]


@dataclass
class NetConnectionCreateStreamResult(AMFConvertible):
    stream_id: int = 0

    @classmethod
    def from_args(cls, *args: Any) -> "NetConnectionCreateStreamResult":
        return cls(stream_id=_uint32_arg(args, 1, "createStream result"))

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.stream_id]


@dataclass
class NetConnectionReleaseStream(AMFConvertible):
    stream_name: str = ""

    @classmethod
    def from_args(cls, *args: Any) -> "NetConnectionReleaseStream":
        return cls(stream_name=_string_arg(args, 1, "releaseStream"))

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.stream_name]


# NetStream commands


@dataclass
class NetStreamPublish(AMFConvertible):
    command_object: Any = None
    publishing_name: str = ""
    publishing_type: str = ""

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamPublish":
        return cls(
            publishing_name=_string_arg(args, 1, "publish"),
            publishing_type=_string_arg(args, 2, "publish"),
        )

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.publishing_name, self.publishing_type]


@dataclass
class NetStreamPlay(AMFConvertible):
    command_object: Any = None
    stream_name: str = ""
    start: int = 0

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamPlay":
        return cls(
            stream_name=_string_arg(args, 1, "play"),
            start=_int64_arg(args, 2, "play"),
        )

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.stream_name, self.start]


@dataclass
class NetStreamOnStatusInfoObject:
    level: str = NetStreamOnStatusLevel.STATUS
    code: str = ""
    description: str = ""


@dataclass
class NetStreamOnStatus(AMFConvertible):
    info_object: NetStreamOnStatusInfoObject = field(
        default_factory=NetStreamOnStatusInfoObject
    )

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamOnStatus":
        info = _arg(args, 1, "onStatus")
        if not isinstance(info, Mapping):
            raise TypeError("onStatus info object must be a mapping")

        def pick(key: str, kind: type) -> str:
            value = info.get(key, "")
            if not isinstance(value, str):
                raise TypeError(f"onStatus '{key}' must be a string")
            try:
                return kind(value)
            except ValueError:
                return value

        return cls(
            info_object=NetStreamOnStatusInfoObject(
                level=pick("level", NetStreamOnStatusLevel),
                code=pick("code", NetStreamOnStatusCode),
                description=pick("description", str),
            )
        )

    def to_args(self, encoding: EncodingType) -> list[Any]:
        info = {
            "level": self.info_object.level,
            "code": self.info_object.code,
            "description": self.info_object.description,
        }
        return [None, info]


@dataclass
class NetStreamDeleteStream(AMFConvertible):
    stream_id: int = 0

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamDeleteStream":
        return cls(stream_id=_uint32_arg(args, 1, "deleteStream"))

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.stream_id]


@dataclass
class NetStreamFCPublish(AMFConvertible):
    stream_name: str = ""

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamFCPublish":
        return cls(stream_name=_string_arg(args, 1, "FCPublish"))

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.stream_name]


@dataclass
class NetStreamFCUnpublish(AMFConvertible):
    stream_name: str = ""

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamFCUnpublish":
        return cls(stream_name=_string_arg(args, 1, "FCUnpublish"))

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.stream_name]


@dataclass
class NetStreamReleaseStream(AMFConvertible):
    stream_name: str = ""

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamReleaseStream":
        return cls(stream_name=_string_arg(args, 1, "releaseStream"))

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.stream_name]


@dataclass
class NetStreamSetDataFrame(AMFConvertible):
    """Metadata frame; payload is the raw body, amf_data is what gets encoded."""

    payload: bytes = b""
    amf_data: Any = None

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamSetDataFrame":
        payload = _arg(args, 0, "@setDataFrame")
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError("@setDataFrame payload must be bytes")
        return cls(payload=bytes(payload))

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return ["onMetaData", self.amf_data]


@dataclass
class NetStreamGetStreamLength(AMFConvertible):
    stream_name: str = ""

    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamGetStreamLength":
        return cls(stream_name=_string_arg(args, 1, "getStreamLength"))

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None, self.stream_name]


@dataclass
class NetStreamPing(AMFConvertible):
    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamPing":
        return cls()

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None]


@dataclass
class NetStreamCloseStream(AMFConvertible):
    @classmethod
    def from_args(cls, *args: Any) -> "NetStreamCloseStream":
        return cls()

    def to_args(self, encoding: EncodingType) -> list[Any]:
        return [None]


def encode_body_any_values(encoder: AMF0Encoder, value: AMFConvertible | None) -> None:
    """Write every argument of value with encoder; nothing is written for None."""
    if value is None:
        return
    if not isinstance(encoder, AMF0Encoder):
        raise TypeError(f"Unsupported AMF Encoder: Type = {type(encoder).__name__}")
    for arg in value.to_args(EncodingType.AMF0):
        encoder.encode(arg)