"""Decoding of command and data message bodies into typed values."""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, BinaryIO, Callable

from rtmpkit.amf0 import AMF0Decoder, AMFConvertible, AMFDecodeError
from rtmpkit.commands import (
    NetConnectionConnect,
    NetConnectionConnectResult,
    NetConnectionCreateStream,
    NetConnectionCreateStreamResult,
    NetConnectionReleaseStream,
    NetStreamCloseStream,
    NetStreamDeleteStream,
    NetStreamFCPublish,
    NetStreamFCUnpublish,
    NetStreamGetStreamLength,
    NetStreamPing,
    NetStreamPlay,
    NetStreamPublish,
    NetStreamSetDataFrame,
)
from rtmpkit.message import UnknownCommandBodyDecodeError, UnknownDataBodyDecodeError

BodyDecoderFunc = Callable[[BinaryIO, AMF0Decoder], AMFConvertible]

_DEFAULT_PUBLISHING_TYPE = "live"


class BodyDecodeError(ValueError):
    """Raised when a message body cannot be decoded or reconstructed."""


def _next(decoder: AMF0Decoder, what: str, index: int) -> Any:
    try:
        return decoder.decode()
    except (EOFError, AMFDecodeError) as exc:
        raise BodyDecodeError(f"Failed to decode '{what}' args[{index}]: {exc}") from exc


def _next_optional(decoder: AMF0Decoder, what: str, index: int, default: Any) -> Any:
    try:
        return decoder.decode()
    except EOFError:
        return default
    except AMFDecodeError as exc:
        raise BodyDecodeError(f"Failed to decode '{what}' args[{index}]: {exc}") from exc


def _as_string(value: Any, what: str, index: int) -> str:
    if not isinstance(value, str):
        raise BodyDecodeError(
            f"Failed to decode '{what}' args[{index}]: "
            f"expected a string, got {type(value).__name__}"
        )
    return value


def _as_integer(value: Any, what: str, index: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise BodyDecodeError(
            f"Failed to decode '{what}' args[{index}]: "
            f"expected a number, got {type(value).__name__}"
        )
    if isinstance(value, float):
        if not math.isfinite(value):
            raise BodyDecodeError(
                f"Failed to decode '{what}' args[{index}]: number is not finite"
            )
        return int(value)
    return value


def _reconstruct(cls: type[AMFConvertible], what: str, *args: Any) -> AMFConvertible:
    try:
        return cls.from_args(*args)
    except (TypeError, ValueError) as exc:
        raise BodyDecodeError(f"Failed to reconstruct '{what}': {exc}") from exc


def _drain(decoder: AMF0Decoder) -> list[Any]:
    objs: list[Any] = []
    while True:
        try:
            objs.append(decoder.decode())
        except (EOFError, AMFDecodeError):
            return objs


def decode_body_at_set_data_frame(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Keep the remaining raw body of an @setDataFrame message as its payload."""
    try:
        payload = stream.read()
    except OSError as exc:
        raise BodyDecodeError(f"Failed to decode '@setDataFrame' args[0]: {exc}") from exc
    return _reconstruct(NetStreamSetDataFrame, "@setDataFrame", payload or b"")


def decode_body_connect(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a connect command."""
    command = _next(decoder, "connect", 0)
    if command is not None and not isinstance(command, Mapping):
        raise BodyDecodeError(
            f"Failed to decode 'connect' args[0]: "
            f"expected an object, got {type(command).__name__}"
        )
    return _reconstruct(NetConnectionConnect, "connect", command)


def decode_body_connect_result(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a reply to connect."""
    properties = _next(decoder, "connect.result", 0)
    information = _next(decoder, "connect.result", 1)
    return _reconstruct(NetConnectionConnectResult, "connect.result", properties, information)


def decode_body_create_stream(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a createStream command."""
    command_object = _next(decoder, "createStream", 0)
    return _reconstruct(NetConnectionCreateStream, "createStream", command_object)


def decode_body_create_stream_result(
    stream: BinaryIO, decoder: AMF0Decoder
) -> AMFConvertible:
    """Decode the body of a reply to createStream."""
    command_object = _next(decoder, "createStream.result", 0)
    stream_id = _as_integer(_next(decoder, "createStream.result", 1), "createStream.result", 1)
    return _reconstruct(
        NetConnectionCreateStreamResult, "createStream.result", command_object, stream_id
    )


def decode_body_delete_stream(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a deleteStream command."""
    command_object = _next(decoder, "deleteStream", 0)
    stream_id = _as_integer(_next(decoder, "deleteStream", 1), "deleteStream", 1)
    return _reconstruct(NetStreamDeleteStream, "deleteStream", command_object, stream_id)


def decode_body_publish(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a publish command; the publishing type defaults to live."""
    command_object = _next(decoder, "publish", 0)
    publishing_name = _as_string(_next(decoder, "publish", 1), "publish", 1)
    publishing_type = _as_string(
        _next_optional(decoder, "publish", 2, _DEFAULT_PUBLISHING_TYPE), "publish", 2
    )
    return _reconstruct(
        NetStreamPublish, "publish", command_object, publishing_name, publishing_type
    )


def decode_body_play(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a play command; a missing start position means 0."""
    command_object = _next(decoder, "play", 0)
    stream_name = _as_string(_next(decoder, "play", 1), "play", 1)
    start = _as_integer(_next_optional(decoder, "play", 2, 0), "play", 2)
    return _reconstruct(NetStreamPlay, "play", command_object, stream_name, start)


def _named_stream_decoder(cls: type[AMFConvertible], what: str) -> BodyDecoderFunc:
    def decode(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
        command_object = _next(decoder, what, 0)
        stream_name = _as_string(_next(decoder, what, 1), what, 1)
        return _reconstruct(cls, what, command_object, stream_name)

    return decode


def decode_body_release_stream(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a releaseStream command."""
    return _named_stream_decoder(NetConnectionReleaseStream, "releaseStream")(stream, decoder)


def decode_body_fc_publish(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of an FCPublish command."""
    return _named_stream_decoder(NetStreamFCPublish, "FCPublish")(stream, decoder)


def decode_body_fc_unpublish(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of an FCUnpublish command."""
    return _named_stream_decoder(NetStreamFCUnpublish, "FCUnpublish")(stream, decoder)


def decode_body_get_stream_length(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a getStreamLength command."""
    return _named_stream_decoder(NetStreamGetStreamLength, "getStreamLength")(stream, decoder)


def decode_body_ping(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a ping command."""
    command_object = _next(decoder, "ping", 0)
    return _reconstruct(NetStreamPing, "ping", command_object)


def decode_body_close_stream(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
    """Decode the body of a closeStream command."""
    command_object = _next(decoder, "closeStream", 0)
    return _reconstruct(NetStreamCloseStream, "closeStream", command_object)


DATA_BODY_DECODERS: dict[str, BodyDecoderFunc] = {
    "@setDataFrame": decode_body_at_set_data_frame,
}

CMD_BODY_DECODERS: dict[str, BodyDecoderFunc] = {
    "connect": decode_body_connect,
    "createStream": decode_body_create_stream,
    "deleteStream": decode_body_delete_stream,
    "publish": decode_body_publish,
    "play": decode_body_play,
    "releaseStream": decode_body_release_stream,
    "FCPublish": decode_body_fc_publish,
    "FCUnpublish": decode_body_fc_unpublish,
    "getStreamLength": decode_body_get_stream_length,
    "ping": decode_body_ping,
    "closeStream": decode_body_close_stream,
}


def data_body_decoder_for(name: str) -> BodyDecoderFunc:
    """Return the body decoder for a data message name.

    For an unknown name the returned decoder reads every remaining value and
    raises UnknownDataBodyDecodeError carrying them.
    """
    known = DATA_BODY_DECODERS.get(name)
    if known is not None:
        return known

    def decode_unknown(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
        raise UnknownDataBodyDecodeError(name, _drain(decoder))

    return decode_unknown


def cmd_body_decoder_for(name: str, transaction_id: int) -> BodyDecoderFunc:
    """Return the body decoder for a command name.

    For an unknown name the returned decoder reads every remaining value and
    raises UnknownCommandBodyDecodeError carrying them.
    """
    known = CMD_BODY_DECODERS.get(name)
    if known is not None:
        return known

    def decode_unknown(stream: BinaryIO, decoder: AMF0Decoder) -> AMFConvertible:
        raise UnknownCommandBodyDecodeError(name, transaction_id, _drain(decoder))

    return decode_unknown