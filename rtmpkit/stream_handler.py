"""Dispatching of messages arriving on a stream according to its state."""

from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable

from rtmpkit.amf0 import new_amf_decoder
from rtmpkit.body_decoder import cmd_body_decoder_for, data_body_decoder_for
from rtmpkit.handlers import (
    PassThroughMessage,
    ServerControlConnectedHandler,
    ServerControlNotConnectedHandler,
    ServerDataInactiveHandler,
    ServerDataPlayHandler,
    ServerDataPublishHandler,
    StateHandler,
)
from rtmpkit.message import CommandMessage, DataMessage, Message, SetChunkSize, WinAckSize

_REPLY_COMMANDS = frozenset({"_result", "_error"})


class StreamState(enum.Enum):
    """States a stream moves through."""

    UNKNOWN = 0
    SERVER_NOT_CONNECTED = 1
    SERVER_CONNECTED = 2
    SERVER_INACTIVE = 3
    SERVER_PUBLISH = 4
    SERVER_PLAY = 5
    CLIENT_NOT_CONNECTED = 6
    CLIENT_CONNECTED = 7

    def __str__(self) -> str:
        return _STATE_NAMES.get(self, "<Unknown>")


_STATE_NAMES = {
    StreamState.SERVER_NOT_CONNECTED: "NotConnected(Server)",
    StreamState.SERVER_CONNECTED: "Connected(Server)",
    StreamState.SERVER_INACTIVE: "Inactive(Server)",
    StreamState.SERVER_PUBLISH: "Publish(Server)",
    StreamState.SERVER_PLAY: "Play(Server)",
    StreamState.CLIENT_NOT_CONNECTED: "NotConnected(Client)",
    StreamState.CLIENT_CONNECTED: "Connected(Client)",
}

_STATE_HANDLERS: dict[StreamState, type[StateHandler]] = {
    StreamState.SERVER_NOT_CONNECTED: ServerControlNotConnectedHandler,
    StreamState.SERVER_CONNECTED: ServerControlConnectedHandler,
    StreamState.SERVER_INACTIVE: ServerDataInactiveHandler,
    StreamState.SERVER_PUBLISH: ServerDataPublishHandler,
    StreamState.SERVER_PLAY: ServerDataPlayHandler,
}


class StreamHandler:
    """Processes the messages of one stream with the handler of its current state."""

    def __init__(self, stream: Any) -> None:
        self.stream = stream
        self.handler: StateHandler | None = None
        self._state = StreamState.UNKNOWN
        self._logger: logging.LoggerAdapter | None = None
        self._lock = threading.Lock()

    def state(self) -> StreamState:
        """Return the current state."""
        return self._state

    def change_state(self, state: StreamState) -> None:
        """Switch to state and install its handler; UNKNOWN leaves everything as is."""
        state = StreamState(state)
        if state is StreamState.UNKNOWN:
            return
        handler_cls = _STATE_HANDLERS.get(state)
        if handler_cls is None:
            raise ValueError(f"Unexpected stream state: {state}")
        with self._lock:
            previous = self._state
            self.handler = handler_cls(sh=self)
            self._state = state
        self.logger().info("Change state: From = %s, To = %s", previous, state)

    def logger(self) -> logging.LoggerAdapter:
        """Return a logger tagged with the stream id and the current state."""
        if self._logger is None:
            self._logger = logging.LoggerAdapter(
                self.stream.logger, {"stream_id": self.stream.stream_id}
            )
        self._logger.extra["state"] = str(self._state)
        return self._logger

    def handle(self, chunk_stream_id: int, timestamp: int, msg: Message) -> None:
        """Process one message that arrived on the stream."""
        if isinstance(msg, DataMessage):
            self._handle_data(chunk_stream_id, timestamp, msg)
        elif isinstance(msg, CommandMessage):
            self._handle_command(chunk_stream_id, timestamp, msg)
        elif isinstance(msg, SetChunkSize):
            self.logger().info("Handle SetChunkSize: Msg = %r", msg)
            self.stream.streamer.peer_state.chunk_size = msg.chunk_size
        elif isinstance(msg, WinAckSize):
            self.logger().info("Handle WinAckSize: Msg = %r", msg)
            self.stream.streamer.peer_state.ack_window_size = msg.size
        else:
            self._dispatch(
                lambda h: h.on_message(chunk_stream_id, timestamp, msg),
                lambda: self.stream.user_handler.on_unknown_message(timestamp, msg),
            )

    def _dispatch(
        self, call: Callable[[StateHandler], None], fallback: Callable[[], None]
    ) -> None:
        handler = self.handler
        if handler is None:
            fallback()
            return
        try:
            call(handler)
        except PassThroughMessage:
            fallback()

    def _handle_data(self, chunk_stream_id: int, timestamp: int, data_msg: DataMessage) -> None:
        body_decoder = data_body_decoder_for(data_msg.name)
        amf_decoder = new_amf_decoder(data_msg.body, data_msg.encoding)
        value = body_decoder(data_msg.body, amf_decoder)
        self._dispatch(
            lambda h: h.on_data(chunk_stream_id, timestamp, data_msg, value),
            lambda: self.stream.user_handler.on_unknown_data_message(timestamp, data_msg),
        )

    def _handle_command(
        self, chunk_stream_id: int, timestamp: int, cmd_msg: CommandMessage
    ) -> None:
        if cmd_msg.command_name in _REPLY_COMMANDS:
            transactions = self.stream.transactions
            try:
                transaction = transactions.at(cmd_msg.transaction_id)
            except KeyError as exc:
                raise KeyError(
                    f"Got response to the unexpected transaction: {exc.args[0]}"
                ) from exc
            transaction.reply(cmd_msg.command_name, cmd_msg.encoding, cmd_msg.body)
            transactions.delete(cmd_msg.transaction_id)
            return

        amf_decoder = new_amf_decoder(cmd_msg.body, cmd_msg.encoding)
        body_decoder = cmd_body_decoder_for(cmd_msg.command_name, cmd_msg.transaction_id)
        value = body_decoder(cmd_msg.body, amf_decoder)
        self._dispatch(
            lambda h: h.on_command(chunk_stream_id, timestamp, cmd_msg, value),
            lambda: self.stream.user_handler.on_unknown_command_message(timestamp, cmd_msg),
        )