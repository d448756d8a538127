"""A logical message stream of a connection."""

from __future__ import annotations

import contextlib
import io
from dataclasses import dataclass
from typing import Any, Callable

from rtmpkit.amf0 import AMFConvertible, EncodingType, new_amf_decoder, new_amf_encoder
from rtmpkit.body_decoder import decode_body_connect_result, decode_body_create_stream_result
from rtmpkit.commands import (
    NetConnectionConnect,
    NetConnectionConnectCode,
    NetConnectionConnectResult,
    NetConnectionCreateStream,
    NetConnectionCreateStreamResult,
    NetStreamDeleteStream,
    NetStreamOnStatus,
    NetStreamPublish,
    encode_body_any_values,
)
from rtmpkit.message import (
    CommandMessage,
    DataMessage,
    Message,
    SetChunkSize,
    SetPeerBandwidth,
    UserCtrl,
    WinAckSize,
)
from rtmpkit.stream_handler import StreamHandler
from rtmpkit.transactions import Transaction

WRITE_TIMEOUT = 5.0
COMMAND_CHUNK_STREAM_ID = 3
PROTOCOL_CONTROL_CHUNK_STREAM_ID = 2
CONNECT_TRANSACTION_ID = 1
CREATE_STREAM_TRANSACTION_ID = 2
_CHUNK_SIZE_MAX = 0x7FFFFFFF

_RESULT_COMMAND_NAMES = {
    NetConnectionConnectCode.SUCCESS: "_result",
    NetConnectionConnectCode.CLOSED: "_result",
    NetConnectionConnectCode.FAILED: "_error",
}


@dataclass
class ChunkMessage:
    """A message addressed to a message stream."""

    stream_id: int
    message: Message


class ConnectRejectedError(Exception):
    """The peer answered connect with _error."""

    def __init__(self, transaction_id: int, result: NetConnectionConnectResult) -> None:
        super().__init__(f"Connect is rejected: TransactionID = {transaction_id}")
        self.transaction_id = transaction_id
        self.result = result


class CreateStreamRejectedError(Exception):
    """The peer answered createStream with _error."""

    def __init__(self, transaction_id: int, result: NetConnectionCreateStreamResult) -> None:
        super().__init__(f"CreateStream is rejected: TransactionID = {transaction_id}")
        self.transaction_id = transaction_id
        self.result = result


class Stream:
    """A message stream of a connection; writes go through the connection's streamer."""

    def __init__(self, stream_id: int, conn: Any) -> None:
        # Imported here because the transaction table lives in its own module.
        from rtmpkit.transactions import Transactions

        self.stream_id = stream_id
        self.encoding = EncodingType.AMF0
        self.transactions = Transactions()
        self.conn = conn
        self.closed = False
        self.handler = StreamHandler(self)

    @property
    def streams(self) -> Any:
        return self.conn.streams

    @property
    def streamer(self) -> Any:
        return self.conn.streamer

    @property
    def user_handler(self) -> Any:
        return self.conn.handler

    @property
    def logger(self) -> Any:
        return self.conn.logger

    def write_win_ack_size(self, chunk_stream_id: int, timestamp: int, msg: WinAckSize) -> None:
        self.write(chunk_stream_id, timestamp, msg)

    def write_set_peer_bandwidth(
        self, chunk_stream_id: int, timestamp: int, msg: SetPeerBandwidth
    ) -> None:
        self.write(chunk_stream_id, timestamp, msg)

    def write_user_ctrl(self, chunk_stream_id: int, timestamp: int, msg: UserCtrl) -> None:
        self.write(chunk_stream_id, timestamp, msg)

    def connect(
        self, body: NetConnectionConnect | None = None, timeout: float | None = None
    ) -> NetConnectionConnectResult:
        """Send connect and wait for the peer's reply."""
        transaction_id = CONNECT_TRANSACTION_ID  # always 1
        transaction = self._begin(
            transaction_id, "connect", body if body is not None else NetConnectionConnect()
        )
        result = self._await(transaction_id, transaction, timeout, decode_body_connect_result)
        if transaction.command_name == "_error":
            raise ConnectRejectedError(transaction_id, result)
        return result

    def reply_connect(
        self, chunk_stream_id: int, timestamp: int, body: NetConnectionConnectResult
    ) -> None:
        """Answer a connect: _result on success or close, _error on failure."""
        command_name = _RESULT_COMMAND_NAMES.get(body.information.code)
        if command_name is None:
            raise ValueError(f"Unexpected connect result code: {body.information.code}")
        self._write_command_message(chunk_stream_id, timestamp, command_name, 1, body)

    def create_stream(
        self,
        body: NetConnectionCreateStream | None = None,
        chunk_size: int = 0,
        timeout: float | None = None,
    ) -> NetConnectionCreateStreamResult:
        """Send createStream, first announcing chunk_size if it differs, and wait."""
        self_state = self.streamer.self_state
        old_chunk_size = self_state.chunk_size
        if chunk_size > 0 and chunk_size != old_chunk_size:
            self.logger.info("Changing chunkSize %d->%d", old_chunk_size, chunk_size)
            self_state.chunk_size = chunk_size
            self.write_set_chunk_size(chunk_size)

        transaction_id = CREATE_STREAM_TRANSACTION_ID
        transaction = self._begin(
            transaction_id,
            "createStream",
            body if body is not None else NetConnectionCreateStream(),
        )
        result = self._await(
            transaction_id, transaction, timeout, decode_body_create_stream_result
        )
        if transaction.command_name == "_error":
            raise CreateStreamRejectedError(transaction_id, result)
        return result

    def delete_stream(self, body: NetStreamDeleteStream) -> None:
        self._write_command_message(COMMAND_CHUNK_STREAM_ID, 0, "deleteStream", 0, body)

    def reply_create_stream(
        self,
        chunk_stream_id: int,
        timestamp: int,
        transaction_id: int,
        body: NetConnectionCreateStreamResult | None,
    ) -> None:
        """Answer createStream; None sends _error."""
        command_name = "_result"
        if body is None:
            command_name = "_error"
            body = NetConnectionCreateStreamResult(stream_id=0)
        self._write_command_message(
            chunk_stream_id, timestamp, command_name, transaction_id, body
        )

    def publish(self, body: NetStreamPublish | None = None) -> None:
        self._write_command_message(
            COMMAND_CHUNK_STREAM_ID,
            0,
            "publish",
            0,  # always 0
            body if body is not None else NetStreamPublish(),
        )

    def notify_status(
        self, chunk_stream_id: int, timestamp: int, body: NetStreamOnStatus
    ) -> None:
        self._write_command_message(chunk_stream_id, timestamp, "onStatus", 0, body)

    def close(self) -> None:
        self._assume_closed()

    def _assume_closed(self) -> None:
        self.closed = True

    def write_data_message(
        self, chunk_stream_id: int, timestamp: int, name: str, body: AMFConvertible | None
    ) -> None:
        buf = io.BytesIO()
        encode_body_any_values(new_amf_encoder(buf, EncodingType.AMF0), body)
        buf.seek(0)
        self.write(
            chunk_stream_id,
            timestamp,
            DataMessage(name=name, encoding=EncodingType.AMF0, body=buf),
        )

    def write_set_chunk_size(self, chunk_size: int) -> None:
        if chunk_size < 1:
            raise ValueError("chunksize < 1")
        if chunk_size > _CHUNK_SIZE_MAX:
            raise ValueError("chunksize > 0x7fffffff")
        self.write(PROTOCOL_CONTROL_CHUNK_STREAM_ID, 0, SetChunkSize(chunk_size=chunk_size))

    def write(self, chunk_stream_id: int, timestamp: int, msg: Message) -> None:
        """Hand msg to the connection's streamer, addressed to this stream."""
        self.streamer.write(
            chunk_stream_id,
            timestamp,
            ChunkMessage(stream_id=self.stream_id, message=msg),
            timeout=WRITE_TIMEOUT,
        )

    def handle(self, chunk_stream_id: int, timestamp: int, msg: Message) -> None:
        self.handler.handle(chunk_stream_id, timestamp, msg)

    def _begin(self, transaction_id: int, command_name: str, body: AMFConvertible) -> Transaction:
        transaction = self.transactions.create(transaction_id)
        try:
            self._write_command_message(
                COMMAND_CHUNK_STREAM_ID, 0, command_name, transaction_id, body
            )
        except Exception:
            self._forget(transaction_id)
            raise
        return transaction

    def _await(
        self,
        transaction_id: int,
        transaction: Transaction,
        timeout: float | None,
        decode: Callable[[Any, Any], AMFConvertible],
    ) -> Any:
        if not transaction.wait(timeout):
            self._forget(transaction_id)
            raise TimeoutError(f"No reply to transaction: TransactionID = {transaction_id}")
        body = transaction.body
        try:
            return decode(body, new_amf_decoder(body, transaction.encoding))
        except (ValueError, TypeError, EOFError) as exc:
            raise ValueError(f"Failed to decode result: {exc}") from exc

    def _forget(self, transaction_id: int) -> None:
        with contextlib.suppress(KeyError):
            self.transactions.delete(transaction_id)

    def _write_command_message(
        self,
        chunk_stream_id: int,
        timestamp: int,
        command_name: str,
        transaction_id: int,
        body: AMFConvertible | None,
    ) -> None:
        buf = io.BytesIO()
        encode_body_any_values(new_amf_encoder(buf, self.encoding), body)
        buf.seek(0)
        self.write(
            chunk_stream_id,
            timestamp,
            CommandMessage(
                command_name=command_name,
                transaction_id=transaction_id,
                encoding=self.encoding,
                body=buf,
            ),
        )