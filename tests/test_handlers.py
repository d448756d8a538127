import io
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from types import SimpleNamespace

import pytest

from rtmpkit.amf0 import EncodingType
from rtmpkit.commands import (
    NetConnectionConnect,
    NetConnectionConnectCode,
    NetConnectionConnectResultProperties,
    NetConnectionCreateStream,
    NetConnectionCreateStreamResult,
    NetConnectionReleaseStream,
    NetStreamDeleteStream,
    NetStreamFCPublish,
    NetStreamFCUnpublish,
    NetStreamOnStatusCode,
    NetStreamOnStatusLevel,
    NetStreamPlay,
    NetStreamPublish,
    NetStreamSetDataFrame,
)
from rtmpkit.handlers import (
    CONTROL_MESSAGE_CHUNK_STREAM_ID,
    PassThroughMessage,
    ReplyError,
    ServerControlConnectedHandler,
    ServerControlNotConnectedHandler,
    ServerDataInactiveHandler,
    ServerDataPlayHandler,
    ServerDataPublishHandler,
    StateHandler,
    StreamContext,
    new_on_status,
)
from rtmpkit.message import (
    Ack,
    AudioMessage,
    CommandMessage,
    DataMessage,
    LimitType,
    SetPeerBandwidth,
    UserCtrl,
    UserCtrlEventStreamBegin,
    VideoMessage,
    WinAckSize,
)
from rtmpkit.response_preset import ResponsePreset


class RecordingUserHandler:
    def __init__(self, reject=()):
        self.calls = []
        self.reject = set(reject)

    def __getattr__(self, name):
        if not name.startswith("on_"):
            raise AttributeError(name)

        def record(*args):
            self.calls.append((name, *args))
            if name in self.reject:
                raise PermissionError(f"{name} rejected")

        return record


class FakeStreamHandler:
    def __init__(self, stream):
        self.stream = stream
        self.states = []

    def logger(self):
        return logging.getLogger("tests.handlers")

    def change_state(self, state):
        self.states.append(state)


class FakeStreams:
    def __init__(self, available=True):
        self.available = available
        self.created = []
        self.deleted = []
        self.missing = set()

    def create_if_available(self):
        if not self.available:
            raise RuntimeError("Creating streams limit exceeded: Limit = 1")
        new_stream = SimpleNamespace(stream_id=1, handler=FakeStreamHandler(None))
        self.created.append(new_stream)
        return new_stream

    def delete(self, stream_id):
        if stream_id in self.missing:
            raise KeyError(f"Stream not exists: StreamID = {stream_id}")
        self.deleted.append(stream_id)


class FakeStream:
    def __init__(self, stream_id=0, *, preset=None, reject=(), fail_on=(), available=True):
        self.stream_id = stream_id
        self.user_handler = RecordingUserHandler(reject)
        self.streams = FakeStreams(available)
        self.streamer = SimpleNamespace(
            self_state=SimpleNamespace(
                ack_window_size=2500000,
                bandwidth_window_size=2500000,
                bandwidth_limit_type=LimitType.DYNAMIC,
            )
        )
        self.conn = SimpleNamespace(config=SimpleNamespace(response_preset=preset))
        self.sent = []
        self.fail_on = set(fail_on)

    def _record(self, kind, *args):
        self.sent.append((kind, *args))
        if kind in self.fail_on:
            raise BrokenPipeError(f"{kind} failed")

    def write_win_ack_size(self, chunk_stream_id, timestamp, msg):
        self._record("win_ack_size", chunk_stream_id, timestamp, msg)

    def write_set_peer_bandwidth(self, chunk_stream_id, timestamp, msg):
        self._record("set_peer_bandwidth", chunk_stream_id, timestamp, msg)

    def write_user_ctrl(self, chunk_stream_id, timestamp, msg):
        self._record("user_ctrl", chunk_stream_id, timestamp, msg)

    def reply_connect(self, chunk_stream_id, timestamp, body):
        self._record("reply_connect", chunk_stream_id, timestamp, body)

    def reply_create_stream(self, chunk_stream_id, timestamp, transaction_id, body):
        self._record("reply_create_stream", chunk_stream_id, timestamp, transaction_id, body)

    def notify_status(self, chunk_stream_id, timestamp, body):
        self._record("notify_status", chunk_stream_id, timestamp, body)


def command(name, transaction_id=0):
    return CommandMessage(
        command_name=name,
        transaction_id=transaction_id,
        encoding=EncodingType.AMF0,
        body=io.BytesIO(),
    )


def make(handler_cls, **stream_options):
    stream = FakeStream(**stream_options)
    sh = FakeStreamHandler(stream)
    return handler_cls(sh), sh, stream


# --- pass-through behaviour ----------------------------------------------


@pytest.mark.parametrize("handler_cls", [StateHandler, ServerDataPlayHandler])
def test_default_handlers_pass_everything_through(handler_cls):
    handler, _, _ = make(handler_cls)
    with pytest.raises(PassThroughMessage):
        handler.on_message(3, 0, Ack(sequence_number=1))
    with pytest.raises(PassThroughMessage):
        handler.on_data(3, 0, DataMessage("x", EncodingType.AMF0, io.BytesIO()), None)
    with pytest.raises(PassThroughMessage):
        handler.on_command(3, 0, command("play"), NetStreamPlay(stream_name="abc"))


def test_handlers_compare_by_class_and_stream_handler():
    sh = FakeStreamHandler(FakeStream())
    assert ServerDataPublishHandler(sh) == ServerDataPublishHandler(sh)
    assert ServerDataPublishHandler(sh) != ServerDataPlayHandler(sh)
    assert ServerDataPublishHandler(sh) != ServerDataPublishHandler(FakeStreamHandler(None))


# --- publish -------------------------------------------------------------


def test_publish_handler_forwards_video_message():
    handler, _, stream = make(ServerDataPublishHandler, stream_id=42)
    payload = io.BytesIO(b"video data")
    handler.on_message(0, 0, VideoMessage(payload=payload))
    assert stream.user_handler.calls == [("on_video", 0, payload)]


def test_publish_handler_forwards_audio_message():
    handler, _, stream = make(ServerDataPublishHandler)
    payload = io.BytesIO(b"audio data")
    handler.on_message(4, 1234, AudioMessage(payload=payload))
    assert stream.user_handler.calls == [("on_audio", 1234, payload)]


def test_publish_handler_passes_other_messages_through():
    handler, _, stream = make(ServerDataPublishHandler)
    with pytest.raises(PassThroughMessage):
        handler.on_message(2, 0, Ack(sequence_number=7))
    with pytest.raises(PassThroughMessage):
        handler.on_command(3, 0, command("FCPublish"), NetStreamFCPublish(stream_name="a"))
    assert stream.user_handler.calls == []


def test_publish_handler_forwards_set_data_frame():
    handler, _, stream = make(ServerDataPublishHandler)
    frame = NetStreamSetDataFrame(payload=b"payload")
    data_msg = DataMessage("@setDataFrame", EncodingType.AMF0, io.BytesIO())
    handler.on_data(4, 99, data_msg, frame)
    assert stream.user_handler.calls == [("on_set_data_frame", 99, frame)]


def test_publish_handler_passes_unknown_data_through():
    handler, _, _ = make(ServerDataPublishHandler)
    data_msg = DataMessage("other", EncodingType.AMF0, io.BytesIO())
    with pytest.raises(PassThroughMessage):
        handler.on_data(4, 0, data_msg, None)


# --- not connected -------------------------------------------------------


def test_connect_accepted_sends_control_messages_and_result():
    handler, sh, stream = make(ServerControlNotConnectedHandler)
    cmd = NetConnectionConnect()
    handler.on_command(3, 10, command("connect", 1), cmd)

    assert stream.user_handler.calls == [("on_connect", 10, cmd)]
    kinds = [entry[0] for entry in stream.sent]
    assert kinds == ["win_ack_size", "set_peer_bandwidth", "user_ctrl", "reply_connect"]

    assert stream.sent[0] == (
        "win_ack_size",
        CONTROL_MESSAGE_CHUNK_STREAM_ID,
        10,
        WinAckSize(size=2500000),
    )
    assert stream.sent[1] == (
        "set_peer_bandwidth",
        CONTROL_MESSAGE_CHUNK_STREAM_ID,
        10,
        SetPeerBandwidth(size=2500000, limit=LimitType.DYNAMIC),
    )
    assert stream.sent[2] == (
        "user_ctrl",
        CONTROL_MESSAGE_CHUNK_STREAM_ID,
        10,
        UserCtrl(event=UserCtrlEventStreamBegin(stream_id=0)),
    )
    _, chunk_stream_id, timestamp, result = stream.sent[3]
    assert (chunk_stream_id, timestamp) == (3, 10)
    assert result.information.code == NetConnectionConnectCode.SUCCESS
    assert result.information.level == "status"
    assert result.information.description == "Connection succeeded."
    assert [state.name for state in sh.states] == ["SERVER_CONNECTED"]


def test_connect_rejected_by_user_replies_error_and_raises():
    handler, sh, stream = make(ServerControlNotConnectedHandler, reject={"on_connect"})
    with pytest.raises(PermissionError):
        handler.on_command(3, 0, command("connect", 1), NetConnectionConnect())

    assert [entry[0] for entry in stream.sent] == ["reply_connect"]
    result = stream.sent[0][3]
    assert result.information.code == NetConnectionConnectCode.FAILED
    assert result.information.level == "error"
    assert result.information.description == "Connection failed."
    assert sh.states == []


def test_connect_failing_write_replies_error():
    handler, sh, stream = make(ServerControlNotConnectedHandler, fail_on={"user_ctrl"})
    with pytest.raises(BrokenPipeError):
        handler.on_command(3, 0, command("connect", 1), NetConnectionConnect())
    assert stream.sent[-1][0] == "reply_connect"
    assert stream.sent[-1][3].information.code == NetConnectionConnectCode.FAILED
    assert sh.states == []


def test_connect_error_reply_failure_is_reported():
    handler, _, _ = make(
        ServerControlNotConnectedHandler,
        reject={"on_connect"},
        fail_on={"reply_connect"},
    )
    with pytest.raises(ReplyError) as info:
        handler.on_command(3, 0, command("connect", 1), NetConnectionConnect())
    assert isinstance(info.value.__cause__, PermissionError)
    assert "Failed to reply response" in str(info.value)


def test_not_connected_passes_other_commands_through():
    handler, _, stream = make(ServerControlNotConnectedHandler)
    with pytest.raises(PassThroughMessage):
        handler.on_command(3, 0, command("createStream", 2), NetConnectionCreateStream())
    assert stream.sent == []


def test_connect_results_use_default_preset():
    handler, _, _ = make(ServerControlNotConnectedHandler)
    success = handler.new_connect_success_result()
    assert success.properties.capabilities == 31
    assert success.properties.mode == 1
    assert dict(success.information.data) == {"type": "rtmpkit", "version": "master"}
    error = handler.new_connect_error_result()
    assert error.properties == success.properties
    assert error.information.code == NetConnectionConnectCode.FAILED


def test_connect_results_use_configured_preset():
    preset = ResponsePreset(
        server_connect_result_properties=NetConnectionConnectResultProperties(
            fms_ver="FMS/3,0,1,123", capabilities=7, mode=2
        ),
        server_connect_result_data={"type": "custom"},
    )
    handler, _, _ = make(ServerControlNotConnectedHandler, preset=preset)
    result = handler.new_connect_success_result()
    assert result.properties.fms_ver == "FMS/3,0,1,123"
    assert result.properties.capabilities == 7
    assert dict(result.information.data) == {"type": "custom"}


# --- connected -----------------------------------------------------------


def test_create_stream_replies_with_new_stream_id():
    handler, _, stream = make(ServerControlConnectedHandler)
    cmd = NetConnectionCreateStream()
    handler.on_command(3, 5, command("createStream", 2), cmd)

    assert stream.user_handler.calls == [("on_create_stream", 5, cmd)]
    assert stream.sent == [
        ("reply_create_stream", 3, 5, 2, NetConnectionCreateStreamResult(stream_id=1))
    ]
    new_stream = stream.streams.created[0]
    assert [state.name for state in new_stream.handler.states] == ["SERVER_INACTIVE"]


def test_create_stream_without_free_stream_replies_error_and_keeps_connection():
    handler, _, stream = make(ServerControlConnectedHandler, available=False)
    handler.on_command(3, 5, command("createStream", 2), NetConnectionCreateStream())
    assert stream.sent == [("reply_create_stream", 3, 5, 2, None)]


def test_create_stream_rejected_by_user_replies_error_and_raises():
    handler, _, stream = make(ServerControlConnectedHandler, reject={"on_create_stream"})
    with pytest.raises(PermissionError):
        handler.on_command(3, 5, command("createStream", 4), NetConnectionCreateStream())
    assert stream.sent == [("reply_create_stream", 3, 5, 4, None)]
    assert stream.streams.created == []


def test_create_stream_reply_failure_deletes_new_stream():
    handler, _, stream = make(ServerControlConnectedHandler, fail_on={"reply_create_stream"})
    with pytest.raises(ReplyError):
        handler.on_command(3, 5, command("createStream", 2), NetConnectionCreateStream())
    assert stream.streams.deleted == [1]


def test_delete_stream_removes_stream():
    handler, _, stream = make(ServerControlConnectedHandler)
    cmd = NetStreamDeleteStream(stream_id=42)
    handler.on_command(3, 0, command("deleteStream"), cmd)
    assert stream.user_handler.calls == [("on_delete_stream", 0, cmd)]
    assert stream.streams.deleted == [42]
    assert stream.sent == []


def test_delete_unknown_stream_raises():
    handler, _, stream = make(ServerControlConnectedHandler)
    stream.streams.missing.add(9)
    with pytest.raises(KeyError):
        handler.on_command(3, 0, command("deleteStream"), NetStreamDeleteStream(stream_id=9))


@pytest.mark.parametrize(
    "body, callback",
    [
        (NetConnectionReleaseStream(stream_name="abc"), "on_release_stream"),
        (NetStreamFCPublish(stream_name="abc"), "on_fc_publish"),
        (NetStreamFCUnpublish(stream_name="abc"), "on_fc_unpublish"),
    ],
)
def test_connected_forwards_stream_name_commands(body, callback):
    handler, _, stream = make(ServerControlConnectedHandler)
    handler.on_command(3, 7, command("x"), body)
    assert stream.user_handler.calls == [(callback, 7, body)]
    assert stream.sent == []


def test_connected_passes_unknown_commands_through():
    handler, _, _ = make(ServerControlConnectedHandler)
    with pytest.raises(PassThroughMessage):
        handler.on_command(3, 0, command("connect", 1), NetConnectionConnect())


# --- inactive ------------------------------------------------------------


def inactive(**options):
    stream = FakeStream(stream_id=1, **options)
    sh = FakeStreamHandler(stream)
    return ServerDataInactiveHandler(sh, notify_url=None), sh, stream


def test_publish_accepted_notifies_start_and_changes_state():
    handler, sh, stream = inactive()
    cmd = NetStreamPublish(publishing_name="abc", publishing_type="live")
    handler.on_command(4, 0, command("publish"), cmd)

    assert stream.user_handler.calls == [("on_publish", StreamContext(stream_id=1), 0, cmd)]
    (kind, chunk_stream_id, timestamp, status), = stream.sent
    assert (kind, chunk_stream_id, timestamp) == ("notify_status", 4, 0)
    assert status.info_object.code == NetStreamOnStatusCode.PUBLISH_START
    assert status.info_object.level == NetStreamOnStatusLevel.STATUS
    assert status.info_object.description == "Publish succeeded."
    assert [state.name for state in sh.states] == ["SERVER_PUBLISH"]


def test_publish_rejected_notifies_failure_and_raises():
    handler, sh, stream = inactive(reject={"on_publish"})
    with pytest.raises(PermissionError):
        handler.on_command(4, 0, command("publish"), NetStreamPublish(publishing_name="a"))
    status = stream.sent[0][3]
    assert status.info_object.code == NetStreamOnStatusCode.PUBLISH_FAILED
    assert status.info_object.level == NetStreamOnStatusLevel.ERROR
    assert status.info_object.description == "Publish failed."
    assert sh.states == []


def test_play_accepted_notifies_start_and_changes_state():
    handler, sh, stream = inactive()
    cmd = NetStreamPlay(stream_name="abc", start=0)
    handler.on_command(4, 0, command("play"), cmd)
    status = stream.sent[0][3]
    assert status.info_object.code == NetStreamOnStatusCode.PLAY_START
    assert status.info_object.description == "Play succeeded."
    assert [state.name for state in sh.states] == ["SERVER_PLAY"]


def test_play_rejected_with_failing_notify_raises_reply_error():
    handler, sh, _ = inactive(reject={"on_play"}, fail_on={"notify_status"})
    with pytest.raises(ReplyError) as info:
        handler.on_command(4, 0, command("play"), NetStreamPlay(stream_name="abc"))
    assert isinstance(info.value.__cause__, PermissionError)
    assert sh.states == []


def test_inactive_passes_other_commands_through():
    handler, _, stream = inactive()
    with pytest.raises(PassThroughMessage):
        handler.on_command(4, 0, command("FCPublish"), NetStreamFCPublish(stream_name="a"))
    assert stream.sent == []


def test_accepted_publish_requests_notify_url():
    received = {}
    arrived = threading.Event()

    class Recorder(BaseHTTPRequestHandler):
        def do_GET(self):
            received["path"] = self.path
            self.send_response(200)
            self.send_header("Content-Length", "0")
            self.end_headers()
            arrived.set()

        def log_message(self, format, *args):
            pass

    server = HTTPServer(("127.0.0.1", 0), Recorder)
    worker = threading.Thread(target=server.serve_forever, daemon=True)
    worker.start()
    try:
        stream = FakeStream(stream_id=1)
        sh = FakeStreamHandler(stream)
        url = f"http://127.0.0.1:{server.server_address[1]}/data?channel=$tart"
        handler = ServerDataInactiveHandler(sh, notify_url=url)
        handler.on_command(4, 0, command("publish"), NetStreamPublish(publishing_name="a"))

        assert [state.name for state in sh.states] == ["SERVER_PUBLISH"]
        (kind, _, _, status), = stream.sent
        assert kind == "notify_status"
        assert status.info_object.code == NetStreamOnStatusCode.PUBLISH_START
        assert arrived.wait(5)
        assert received["path"] == "/data?channel=$tart"
    finally:
        server.shutdown()
        server.server_close()


# --- onStatus ------------------------------------------------------------


@pytest.mark.parametrize(
    "code, level",
    [
        (NetStreamOnStatusCode.CONNECT_FAILED, NetStreamOnStatusLevel.ERROR),
        (NetStreamOnStatusCode.PLAY_FAILED, NetStreamOnStatusLevel.ERROR),
        (NetStreamOnStatusCode.PUBLISH_BAD_NAME, NetStreamOnStatusLevel.ERROR),
        (NetStreamOnStatusCode.PUBLISH_FAILED, NetStreamOnStatusLevel.ERROR),
        (NetStreamOnStatusCode.PUBLISH_START, NetStreamOnStatusLevel.STATUS),
        (NetStreamOnStatusCode.PLAY_START, NetStreamOnStatusLevel.STATUS),
        (NetStreamOnStatusCode.UNPUBLISH_SUCCESS, NetStreamOnStatusLevel.STATUS),
    ],
)
def test_new_on_status_level(code, level):
    status = new_on_status(code, "desc")
    assert status.info_object.level == level
    assert status.info_object.code == code
    assert status.info_object.description == "desc"


def test_new_on_status_arguments_are_encoded_as_info_object():
    status = new_on_status(NetStreamOnStatusCode.PUBLISH_START, "Publish succeeded.")
    assert status.to_args(EncodingType.AMF0) == [
        None,
        {
            "level": NetStreamOnStatusLevel.STATUS,
            "code": NetStreamOnStatusCode.PUBLISH_START,
            "description": "Publish succeeded.",
        },
    ]