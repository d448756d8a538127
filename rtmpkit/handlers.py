"""Per-state handlers for messages arriving on a server-side stream.

Each handler works on behalf of a stream handler, which owns the stream,
its logger and the current state. A handler raises PassThroughMessage for
anything it leaves to the user's handler.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import urllib.request
from dataclasses import dataclass, field
from typing import Any

from rtmpkit.amf0 import ECMAArray
from rtmpkit.commands import (
    NetConnectionConnect,
    NetConnectionConnectCode,
    NetConnectionConnectResult,
    NetConnectionConnectResultInformation,
    NetConnectionCreateStream,
    NetConnectionCreateStreamResult,
    NetConnectionReleaseStream,
    NetStreamDeleteStream,
    NetStreamFCPublish,
    NetStreamFCUnpublish,
    NetStreamOnStatus,
    NetStreamOnStatusCode,
    NetStreamOnStatusInfoObject,
    NetStreamOnStatusLevel,
    NetStreamPlay,
    NetStreamPublish,
    NetStreamSetDataFrame,
)
from rtmpkit.message import (
    AudioMessage,
    SetPeerBandwidth,
    UserCtrl,
    UserCtrlEventStreamBegin,
    VideoMessage,
    WinAckSize,
)
from rtmpkit.response_preset import DEFAULT_RESPONSE_PRESET, ResponsePreset

logger = logging.getLogger(__name__)

CONTROL_MESSAGE_CHUNK_STREAM_ID = 2
PUBLISH_NOTIFY_URL = "http://localhost:7001/data?channel=$tart"
_NOTIFY_TIMEOUT = 10.0

_ERROR_STATUS_CODES = frozenset(
    {
        NetStreamOnStatusCode.CONNECT_FAILED,
        NetStreamOnStatusCode.PLAY_FAILED,
        NetStreamOnStatusCode.PUBLISH_BAD_NAME,
        NetStreamOnStatusCode.PUBLISH_FAILED,
    }
)


class PassThroughMessage(Exception):
    """Raised by a state handler for a message it leaves to the user handler."""


class ReplyError(RuntimeError):
    """Raised when a request failed and the reply telling the peer so failed too."""


@dataclass(frozen=True)
class StreamContext:
    """Identifies the stream a publish or play request arrived on."""

    stream_id: int


def _change_state(stream_handler: Any, name: str) -> None:
    # Imported here because the stream handler module imports this one.
    from rtmpkit.stream_handler import StreamState

    stream_handler.change_state(StreamState[name])


def _reply_failed(exc: Exception, reply_exc: Exception) -> ReplyError:
    return ReplyError(f"{exc}: Failed to reply response: Err = {reply_exc}")


def new_on_status(code: NetStreamOnStatusCode, description: str) -> NetStreamOnStatus:
    """Build an onStatus body; failure codes get the error level."""
    level = (
        NetStreamOnStatusLevel.ERROR
        if code in _ERROR_STATUS_CODES
        else NetStreamOnStatusLevel.STATUS
    )
    return NetStreamOnStatus(
        info_object=NetStreamOnStatusInfoObject(
            level=level, code=code, description=description
        )
    )


def _notify_publish_started(url: str) -> None:
    try:
        with urllib.request.urlopen(url, timeout=_NOTIFY_TIMEOUT) as response:
            response.read()
    except (OSError, ValueError) as exc:
        logger.warning("Error: %s", exc)


@dataclass
class StateHandler:
    """Handler of one stream state; by default every message is passed through."""

    sh: Any = field(repr=False)

    def on_message(self, chunk_stream_id: int, timestamp: int, msg: Any) -> None:
        raise PassThroughMessage

    def on_data(
        self, chunk_stream_id: int, timestamp: int, data_msg: Any, body: Any
    ) -> None:
        raise PassThroughMessage

    def on_command(
        self, chunk_stream_id: int, timestamp: int, cmd_msg: Any, body: Any
    ) -> None:
        raise PassThroughMessage


class ServerControlNotConnectedHandler(StateHandler):
    """Control stream of a client that has not sent connect yet.

    A successful connect moves the stream to the connected state.
    """

    def on_command(
        self, chunk_stream_id: int, timestamp: int, cmd_msg: Any, body: Any
    ) -> None:
        if not isinstance(body, NetConnectionConnect):
            raise PassThroughMessage
        log = self.sh.logger()
        log.info("Connect")
        try:
            self._accept(chunk_stream_id, timestamp, body, log)
        except Exception as exc:
            result = self.new_connect_error_result()
            log.info("Connect(Error): ResponseBody = %r, Err = %s", result, exc)
            try:
                self.sh.stream.reply_connect(chunk_stream_id, timestamp, result)
            except Exception as reply_exc:
                raise _reply_failed(exc, reply_exc) from exc
            raise

    def _accept(
        self, chunk_stream_id: int, timestamp: int, cmd: NetConnectionConnect, log: Any
    ) -> None:
        stream = self.sh.stream
        stream.user_handler.on_connect(timestamp, cmd)

        state = stream.streamer.self_state
        log.info("Set win ack size: Size = %s", state.ack_window_size)
        stream.write_win_ack_size(
            CONTROL_MESSAGE_CHUNK_STREAM_ID,
            timestamp,
            WinAckSize(size=state.ack_window_size),
        )

        log.info(
            "Set peer bandwidth: Size = %s, Limit = %s",
            state.bandwidth_window_size,
            state.bandwidth_limit_type,
        )
        stream.write_set_peer_bandwidth(
            CONTROL_MESSAGE_CHUNK_STREAM_ID,
            timestamp,
            SetPeerBandwidth(
                size=state.bandwidth_window_size, limit=state.bandwidth_limit_type
            ),
        )

        log.info("Stream Begin: ID = %d", stream.stream_id)
        stream.write_user_ctrl(
            CONTROL_MESSAGE_CHUNK_STREAM_ID,
            timestamp,
            UserCtrl(event=UserCtrlEventStreamBegin(stream_id=stream.stream_id)),
        )

        result = self.new_connect_success_result()
        log.info("Connect: ResponseBody = %r", result)
        stream.reply_connect(chunk_stream_id, timestamp, result)
        log.info("Connected")

        _change_state(self.sh, "SERVER_CONNECTED")

    def _response_preset(self) -> ResponsePreset:
        preset = self.sh.stream.conn.config.response_preset
        return preset if preset is not None else DEFAULT_RESPONSE_PRESET

    def _connect_result(
        self, level: str, code: NetConnectionConnectCode, description: str
    ) -> NetConnectionConnectResult:
        preset = self._response_preset()
        return NetConnectionConnectResult(
            properties=preset.server_connect_result_properties,
            information=NetConnectionConnectResultInformation(
                level=level,
                code=code,
                description=description,
                data=ECMAArray(preset.server_connect_result_data),
            ),
        )

    def new_connect_success_result(self) -> NetConnectionConnectResult:
        """Return the reply sent when a connect is accepted."""
        return self._connect_result(
            "status", NetConnectionConnectCode.SUCCESS, "Connection succeeded."
        )

    def new_connect_error_result(self) -> NetConnectionConnectResult:
        """Return the reply sent when a connect is rejected."""
        return self._connect_result(
            "error", NetConnectionConnectCode.FAILED, "Connection failed."
        )


class ServerControlConnectedHandler(StateHandler):
    """Control stream of a connected client: creates and deletes streams."""

    def on_command(
        self, chunk_stream_id: int, timestamp: int, cmd_msg: Any, body: Any
    ) -> None:
        log = self.sh.logger()
        user_handler = self.sh.stream.user_handler

        if isinstance(body, NetConnectionCreateStream):
            log.info("Stream creating...: %r", body)
            transaction_id = cmd_msg.transaction_id
            try:
                self._create_stream(chunk_stream_id, timestamp, transaction_id, body, log)
            except Exception as exc:
                log.info("CreateStream(Error): ResponseBody = None, Err = %s", exc)
                try:
                    self.sh.stream.reply_create_stream(
                        chunk_stream_id, timestamp, transaction_id, None
                    )
                except Exception as reply_exc:
                    raise _reply_failed(exc, reply_exc) from exc
                raise
        elif isinstance(body, NetStreamDeleteStream):
            log.info("Stream deleting...: TargetStreamID = %d", body.stream_id)
            user_handler.on_delete_stream(timestamp, body)
            self.sh.stream.streams.delete(body.stream_id)
            # The server sends no response to deleteStream.
            log.info("Stream deleted: TargetStreamID = %d", body.stream_id)
        elif isinstance(body, NetConnectionReleaseStream):
            log.info("Release stream...: StreamName = %s", body.stream_name)
            user_handler.on_release_stream(timestamp, body)
        elif isinstance(body, NetStreamFCPublish):
            log.info("FCPublish stream...: StreamName = %s", body.stream_name)
            user_handler.on_fc_publish(timestamp, body)
        elif isinstance(body, NetStreamFCUnpublish):
            log.info("FCUnpublish stream...: StreamName = %s", body.stream_name)
            user_handler.on_fc_unpublish(timestamp, body)
        else:
            raise PassThroughMessage

    def _create_stream(
        self,
        chunk_stream_id: int,
        timestamp: int,
        transaction_id: int,
        cmd: NetConnectionCreateStream,
        log: Any,
    ) -> None:
        stream = self.sh.stream
        stream.user_handler.on_create_stream(timestamp, cmd)

        try:
            new_stream = stream.streams.create_if_available()
        except Exception as exc:
            log.error("Failed to create stream: Err = %s", exc)
            try:
                stream.reply_create_stream(chunk_stream_id, timestamp, transaction_id, None)
            except Exception as reply_exc:
                raise _reply_failed(exc, reply_exc) from exc
            return  # keep the connection
        _change_state(new_stream.handler, "SERVER_INACTIVE")

        result = NetConnectionCreateStreamResult(stream_id=new_stream.stream_id)
        try:
            stream.reply_create_stream(chunk_stream_id, timestamp, transaction_id, result)
        except Exception:
            with contextlib.suppress(Exception):
                stream.streams.delete(new_stream.stream_id)
            raise

        log.info("Stream created...: NewStreamID = %d", new_stream.stream_id)


@dataclass
class ServerDataInactiveHandler(StateHandler):
    """Data stream waiting for publish or play.

    When a publisher is accepted, notify_url (if set) is requested in the
    background.
    """

    notify_url: str | None = PUBLISH_NOTIFY_URL

    def on_command(
        self, chunk_stream_id: int, timestamp: int, cmd_msg: Any, body: Any
    ) -> None:
        if isinstance(body, NetStreamPublish):
            self._start(
                chunk_stream_id,
                timestamp,
                body,
                kind="Publish",
                accept=self.sh.stream.user_handler.on_publish,
                failed=NetStreamOnStatusCode.PUBLISH_FAILED,
                started=NetStreamOnStatusCode.PUBLISH_START,
                next_state="SERVER_PUBLISH",
            )
            if self.notify_url is not None:
                threading.Thread(
                    target=_notify_publish_started,
                    args=(self.notify_url,),
                    name="publish-notify",
                    daemon=True,
                ).start()
        elif isinstance(body, NetStreamPlay):
            self._start(
                chunk_stream_id,
                timestamp,
                body,
                kind="Play",
                accept=self.sh.stream.user_handler.on_play,
                failed=NetStreamOnStatusCode.PLAY_FAILED,
                started=NetStreamOnStatusCode.PLAY_START,
                next_state="SERVER_PLAY",
            )
        else:
            raise PassThroughMessage

    def _start(
        self,
        chunk_stream_id: int,
        timestamp: int,
        cmd: Any,
        *,
        kind: str,
        accept: Any,
        failed: NetStreamOnStatusCode,
        started: NetStreamOnStatusCode,
        next_state: str,
    ) -> None:
        log = self.sh.logger()
        stream = self.sh.stream
        role = "Publisher" if kind == "Publish" else "Player"
        log.info("%s is comming: %r", role, cmd)

        context = StreamContext(stream_id=stream.stream_id)
        try:
            accept(context, timestamp, cmd)
        except Exception as exc:
            result = new_on_status(failed, f"{kind} failed.")
            log.info("Reject a %s request: Response = %r, Err = %s", kind, result, exc)
            try:
                stream.notify_status(chunk_stream_id, timestamp, result)
            except Exception as reply_exc:
                raise _reply_failed(exc, reply_exc) from exc
            raise

        stream.notify_status(
            chunk_stream_id, timestamp, new_on_status(started, f"{kind} succeeded.")
        )
        log.info("%s accepted", role)
        _change_state(self.sh, next_state)


class ServerDataPublishHandler(StateHandler):
    """Data stream of a publisher: forwards audio, video and metadata."""

    def on_message(self, chunk_stream_id: int, timestamp: int, msg: Any) -> None:
        user_handler = self.sh.stream.user_handler
        if isinstance(msg, AudioMessage):
            user_handler.on_audio(timestamp, msg.payload)
        elif isinstance(msg, VideoMessage):
            user_handler.on_video(timestamp, msg.payload)
        else:
            raise PassThroughMessage

    def on_data(
        self, chunk_stream_id: int, timestamp: int, data_msg: Any, body: Any
    ) -> None:
        if isinstance(body, NetStreamSetDataFrame):
            self.sh.stream.user_handler.on_set_data_frame(timestamp, body)
        else:
            raise PassThroughMessage


class ServerDataPlayHandler(StateHandler):
    """Data stream of a player; every message is passed through."""