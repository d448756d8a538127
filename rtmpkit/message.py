"""RTMP message types, user control events and body decode errors."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Union

from rtmpkit.amf0 import EncodingType


class TypeID(enum.IntEnum):
    """Message type identifiers carried in chunk headers."""

    SET_CHUNK_SIZE = 1
    ABORT_MESSAGE = 2
    ACK = 3
    USER_CTRL = 4
    WIN_ACK_SIZE = 5
    SET_PEER_BANDWIDTH = 6
    AUDIO_MESSAGE = 8
    VIDEO_MESSAGE = 9
    DATA_MESSAGE_AMF3 = 15
    SHARED_OBJECT_MESSAGE_AMF3 = 16
    COMMAND_MESSAGE_AMF3 = 17
    DATA_MESSAGE_AMF0 = 18
    SHARED_OBJECT_MESSAGE_AMF0 = 19
    COMMAND_MESSAGE_AMF0 = 20
    AGGREGATE_MESSAGE = 22


class LimitType(enum.IntEnum):
    """Limit type of a Set Peer Bandwidth message."""

    HARD = 0
    SOFT = 1
    DYNAMIC = 2


@dataclass(frozen=True)
class UserCtrlEventStreamBegin:
    stream_id: int


@dataclass(frozen=True)
class UserCtrlEventStreamEOF:
    stream_id: int


@dataclass(frozen=True)
class UserCtrlEventStreamDry:
    stream_id: int


@dataclass(frozen=True)
class UserCtrlEventSetBufferLength:
    stream_id: int
    length_ms: int


@dataclass(frozen=True)
class UserCtrlEventStreamIsRecorded:
    stream_id: int


@dataclass(frozen=True)
class UserCtrlEventPingRequest:
    timestamp: int


@dataclass(frozen=True)
class UserCtrlEventPingResponse:
    timestamp: int


UserCtrlEvent = Union[
    UserCtrlEventStreamBegin,
    UserCtrlEventStreamEOF,
    UserCtrlEventStreamDry,
    UserCtrlEventSetBufferLength,
    UserCtrlEventStreamIsRecorded,
    UserCtrlEventPingRequest,
    UserCtrlEventPingResponse,
]


class Message(abc.ABC):
    """Base of every RTMP message."""

    @abc.abstractmethod
    def type_id(self) -> TypeID:
        """Return the message type identifier."""


def _by_encoding(encoding: EncodingType, amf0: TypeID, amf3: TypeID) -> TypeID:
    if encoding == EncodingType.AMF0:
        return amf0
    if encoding == EncodingType.AMF3:
        return amf3
    raise ValueError(f"Unknown encoding: {encoding!r}")


@dataclass
class SetChunkSize(Message):
    chunk_size: int

    def type_id(self) -> TypeID:
        return TypeID.SET_CHUNK_SIZE


@dataclass
class AbortMessage(Message):
    chunk_stream_id: int

    def type_id(self) -> TypeID:
        return TypeID.ABORT_MESSAGE


@dataclass
class Ack(Message):
    sequence_number: int

    def type_id(self) -> TypeID:
        return TypeID.ACK


@dataclass
class UserCtrl(Message):
    event: Any

    def type_id(self) -> TypeID:
        return TypeID.USER_CTRL


@dataclass
class WinAckSize(Message):
    size: int

    def type_id(self) -> TypeID:
        return TypeID.WIN_ACK_SIZE


@dataclass
class SetPeerBandwidth(Message):
    size: int
    limit: LimitType

    def type_id(self) -> TypeID:
        return TypeID.SET_PEER_BANDWIDTH


@dataclass
class AudioMessage(Message):
    payload: BinaryIO

    def type_id(self) -> TypeID:
        return TypeID.AUDIO_MESSAGE


@dataclass
class VideoMessage(Message):
    payload: BinaryIO

    def type_id(self) -> TypeID:
        return TypeID.VIDEO_MESSAGE


@dataclass
class DataMessage(Message):
    name: str
    encoding: EncodingType
    body: BinaryIO

    def type_id(self) -> TypeID:
        return _by_encoding(self.encoding, TypeID.DATA_MESSAGE_AMF0, TypeID.DATA_MESSAGE_AMF3)


@dataclass
class SharedObjectMessageAMF3(Message):
    def type_id(self) -> TypeID:
        return TypeID.SHARED_OBJECT_MESSAGE_AMF3


@dataclass
class SharedObjectMessageAMF0(Message):
    def type_id(self) -> TypeID:
        return TypeID.SHARED_OBJECT_MESSAGE_AMF0


@dataclass
class CommandMessage(Message):
    command_name: str
    transaction_id: int
    encoding: EncodingType
    body: BinaryIO

    def type_id(self) -> TypeID:
        return _by_encoding(
            self.encoding, TypeID.COMMAND_MESSAGE_AMF0, TypeID.COMMAND_MESSAGE_AMF3
        )


@dataclass
class AggregateMessage(Message):
    def type_id(self) -> TypeID:
        return TypeID.AGGREGATE_MESSAGE


class UnknownDataBodyDecodeError(Exception):
    """Raised when a data message has a name with no known body decoder."""

    def __init__(self, name: str, objs: list[Any] = field(default_factory=list)) -> None:
        self.name = name
        self.objs = list(objs) if isinstance(objs, (list, tuple)) else []
        super().__init__(f"UnknownDataBodyDecodeError: Name = {name}, Objs = {self.objs!r}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnknownDataBodyDecodeError):
            return NotImplemented
        return (self.name, self.objs) == (other.name, other.objs)

    def __hash__(self) -> int:
        return hash((type(self), self.name))


class UnknownCommandBodyDecodeError(Exception):
    """Raised when a command message has a name with no known body decoder."""

    def __init__(self, name: str, transaction_id: int, objs: list[Any] = ()) -> None:
        self.name = name
        self.transaction_id = transaction_id
        self.objs = list(objs)
        super().__init__(
            "UnknownCommandMessageDecodeError: "
            f"Name = {name}, TransactionID = {transaction_id}, Objs = {self.objs!r}"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnknownCommandBodyDecodeError):
            return NotImplemented
        return (self.name, self.transaction_id, self.objs) == (
            other.name,
            other.transaction_id,
            other.objs,
        )

    def __hash__(self) -> int:
        return hash((type(self), self.name, self.transaction_id))