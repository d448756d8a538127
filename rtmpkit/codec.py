"""Binary encoding and decoding of RTMP message payloads."""

from __future__ import annotations

import shutil
import struct
from typing import BinaryIO

from rtmpkit.amf0 import AMFDecodeError, EncodingType, new_amf_decoder, new_amf_encoder
from rtmpkit.message import (
    AbortMessage,
    Ack,
    AggregateMessage,
    AudioMessage,
    CommandMessage,
    DataMessage,
    LimitType,
    Message,
    SetChunkSize,
    SetPeerBandwidth,
    SharedObjectMessageAMF0,
    SharedObjectMessageAMF3,
    TypeID,
    UserCtrl,
    VideoMessage,
    WinAckSize,
)
from rtmpkit.user_control import UserControlEventDecoder, UserControlEventEncoder

_CHUNK_SIZE_MAX = 0x7FFFFFFF
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1
_UINT32_MAX = 0xFFFFFFFF


class UnsupportedMessageError(ValueError):
    """Raised for message kinds whose payload format is not supported."""


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            raise EOFError("unexpected end of message payload")
        data += chunk
    return bytes(data)


def _uint32(value: int, what: str) -> bytes:
    if not 0 <= value <= _UINT32_MAX:
        raise ValueError(f"{what} is out of range: {value}")
    return struct.pack(">I", value)


def _int32(value: int, what: str) -> bytes:
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"{what} is out of range: {value}")
    return struct.pack(">I", value & _UINT32_MAX)


class Decoder:
    """Reads the payload of one message of a given type from a stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def reset(self, stream: BinaryIO) -> None:
        """Continue decoding from another stream."""
        self._stream = stream

    def decode(self, type_id: int) -> Message:
        """Decode and return a message of the given type."""
        try:
            kind = TypeID(type_id)
        except ValueError:
            raise ValueError(f"Unexpected message type(decode): ID = {type_id}") from None

        readers = {
            TypeID.SET_CHUNK_SIZE: self._decode_set_chunk_size,
            TypeID.ABORT_MESSAGE: self._decode_abort_message,
            TypeID.ACK: self._decode_ack,
            TypeID.USER_CTRL: self._decode_user_ctrl,
            TypeID.WIN_ACK_SIZE: self._decode_win_ack_size,
            TypeID.SET_PEER_BANDWIDTH: self._decode_set_peer_bandwidth,
            TypeID.AUDIO_MESSAGE: lambda: AudioMessage(payload=self._stream),
            TypeID.VIDEO_MESSAGE: lambda: VideoMessage(payload=self._stream),
            TypeID.DATA_MESSAGE_AMF0: self._decode_data_message,
            TypeID.COMMAND_MESSAGE_AMF0: self._decode_command_message,
        }
        reader = readers.get(kind)
        if reader is None:
            raise UnsupportedMessageError(f"Unsupported message: {kind.name}")
        return reader()

    def _decode_set_chunk_size(self) -> SetChunkSize:
        (total,) = struct.unpack(">I", _read_exact(self._stream, 4))
        if total & 0x80000000:
            raise ValueError("Invalid format: bit must be 0")
        chunk_size = total & _CHUNK_SIZE_MAX
        if chunk_size == 0:
            raise ValueError("Invalid format: chunk size is 0")
        return SetChunkSize(chunk_size=chunk_size)

    def _decode_abort_message(self) -> AbortMessage:
        (chunk_stream_id,) = struct.unpack(">I", _read_exact(self._stream, 4))
        return AbortMessage(chunk_stream_id=chunk_stream_id)

    def _decode_ack(self) -> Ack:
        (sequence_number,) = struct.unpack(">I", _read_exact(self._stream, 4))
        return Ack(sequence_number=sequence_number)

    def _decode_user_ctrl(self) -> UserCtrl:
        try:
            event = UserControlEventDecoder(self._stream).decode()
        except (EOFError, ValueError) as exc:
            raise ValueError(f"Failed to decode UserCtrl: {exc}") from exc
        return UserCtrl(event=event)

    def _decode_win_ack_size(self) -> WinAckSize:
        (size,) = struct.unpack(">i", _read_exact(self._stream, 4))
        return WinAckSize(size=size)

    def _decode_set_peer_bandwidth(self) -> SetPeerBandwidth:
        size, raw_limit = struct.unpack(">iB", _read_exact(self._stream, 5))
        try:
            limit = LimitType(raw_limit)
        except ValueError:
            limit = raw_limit
        return SetPeerBandwidth(size=size, limit=limit)

    def _decode_string(self, decoder, what: str) -> str:
        try:
            value = decoder.decode()
        except (EOFError, AMFDecodeError) as exc:
            raise ValueError(f"Failed to decode {what}: {exc}") from exc
        if not isinstance(value, str):
            raise ValueError(f"Failed to decode {what}: expected a string")
        return value

    def _decode_data_message(self) -> DataMessage:
        decoder = new_amf_decoder(self._stream, EncodingType.AMF0)
        name = self._decode_string(decoder, "name")
        return DataMessage(name=name, encoding=EncodingType.AMF0, body=self._stream)

    def _decode_command_message(self) -> CommandMessage:
        decoder = new_amf_decoder(self._stream, EncodingType.AMF0)
        name = self._decode_string(decoder, "name")
        try:
            value = decoder.decode()
        except (EOFError, AMFDecodeError) as exc:
            raise ValueError(f"Failed to decode transactionID: {exc}") from exc
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("Failed to decode transactionID: expected a number")
        return CommandMessage(
            command_name=name,
            transaction_id=int(value),
            encoding=EncodingType.AMF0,
            body=self._stream,
        )


class Encoder:
    """Writes the payload of messages to a stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def reset(self, stream: BinaryIO) -> None:
        """Continue encoding into another stream."""
        self._stream = stream

    def encode(self, message: Message) -> None:
        """Write the payload of one message."""
        if isinstance(message, SetChunkSize):
            if not 1 <= message.chunk_size <= _CHUNK_SIZE_MAX:
                raise ValueError(
                    "Invalid format: chunk size is out of range [1, 0x80000000)"
                )
            self._stream.write(struct.pack(">I", message.chunk_size & _CHUNK_SIZE_MAX))
        elif isinstance(message, AbortMessage):
            self._stream.write(_uint32(message.chunk_stream_id, "chunk stream id"))
        elif isinstance(message, Ack):
            self._stream.write(_uint32(message.sequence_number, "sequence number"))
        elif isinstance(message, UserCtrl):
            UserControlEventEncoder(self._stream).encode(message.event)
        elif isinstance(message, WinAckSize):
            self._stream.write(_int32(message.size, "window acknowledgement size"))
        elif isinstance(message, SetPeerBandwidth):
            limit = int(message.limit)
            if not 0 <= limit <= 0xFF:
                raise ValueError(f"limit type is out of range: {limit}")
            self._stream.write(_int32(message.size, "peer bandwidth") + bytes((limit,)))
        elif isinstance(message, (AudioMessage, VideoMessage)):
            shutil.copyfileobj(message.payload, self._stream)
        elif isinstance(message, DataMessage):
            encoder = new_amf_encoder(self._stream, message.encoding)
            encoder.encode(message.name)
            shutil.copyfileobj(message.body, self._stream)
        elif isinstance(message, CommandMessage):
            encoder = new_amf_encoder(self._stream, message.encoding)
            encoder.encode(message.command_name)
            encoder.encode(message.transaction_id)
            shutil.copyfileobj(message.body, self._stream)
        elif isinstance(
            message, (SharedObjectMessageAMF3, SharedObjectMessageAMF0, AggregateMessage)
        ):
            raise UnsupportedMessageError(
                f"Unsupported message: {type(message).__name__}"
            )
        else:
            raise TypeError(
                f"Unexpected message type(encode): Type = {type(message).__name__}"
            )