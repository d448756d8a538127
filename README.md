# rtmpkit

Building blocks for an RTMP server, written in plain Python with no
third-party dependencies:

- **AMF0** encoding and decoding of command arguments (`rtmpkit.amf0`).
- **RTMP messages**: chunk size, abort, acknowledgement, window size, peer
  bandwidth, user control, audio, video, data and command messages
  (`rtmpkit.message`), with a binary `Encoder` and `Decoder`
  (`rtmpkit.codec`).
- **User control events** such as stream begin, stream EOF, buffer length
  and ping (`rtmpkit.user_control`).
- **NetConnection / NetStream command bodies**: `connect`, `createStream`,
  `deleteStream`, `publish`, `play`, `releaseStream`, `FCPublish`,
  `FCUnpublish`, `getStreamLength`, `ping`, `closeStream`, `@setDataFrame`
  and the `onStatus` notification (`rtmpkit.commands`,
  `rtmpkit.body_decoder`).
- **Server-side stream state machine**: per-state handlers that move a
  control stream from *not connected* to *connected*, and data streams from
  *inactive* to *publish* or *play* (`rtmpkit.handlers`,
  `rtmpkit.stream_handler`, `rtmpkit.stream`, `rtmpkit.streams`).
- **Transactions** that match `_result` / `_error` replies to the requests
  that caused them (`rtmpkit.transactions`).
- The server information reported to clients on connect
  (`rtmpkit.response_preset`).

## Installation

```
pip install .
```

Python 3.10 or newer is required.

## Encoding and decoding messages

```python
from io import BytesIO

from rtmpkit.codec import Decoder, Encoder
from rtmpkit.message import SetChunkSize

buf = BytesIO()
message = SetChunkSize(chunk_size=1024)
Encoder(buf).encode(message)
assert buf.getvalue() == b"\x00\x00\x04\x00"

buf.seek(0)
decoded = Decoder(buf).decode(message.type_id())
assert decoded == message
```

Only AMF0 bodies are supported; AMF3 data and command messages, shared
object messages and aggregate messages raise `UnsupportedMessageError`.

User control events work the same way through `UserControlEventEncoder`
and `UserControlEventDecoder`:

```python
from io import BytesIO

from rtmpkit.message import UserCtrlEventStreamBegin
from rtmpkit.user_control import UserControlEventDecoder, UserControlEventEncoder

buf = BytesIO()
UserControlEventEncoder(buf).encode(UserCtrlEventStreamBegin(stream_id=1234))
buf.seek(0)
event = UserControlEventDecoder(buf).decode()
assert event == UserCtrlEventStreamBegin(stream_id=1234)
```

## Command bodies

The body of a command message is a sequence of AMF0 values. Pick the
decoder for a command name with `cmd_body_decoder_for(name, transaction_id)`
(or `data_body_decoder_for(name)` for data messages) and hand it the body
stream and an AMF0 decoder. Unknown names raise
`UnknownCommandBodyDecodeError` / `UnknownDataBodyDecodeError`, which carry
every value that could still be read.

Going the other way, every command class offers `to_args(encoding)`, and
`encode_body_any_values(encoder, value)` writes those arguments with an
AMF0 encoder.

## Streams and state handlers

A `Streams` table owns the `Stream` objects of one connection and refuses
to create more than the configured number of message streams. Each
`Stream` has a `StreamHandler` whose `change_state(...)` swaps in the
handler for a `StreamState`; `handle(...)` dispatches incoming messages to
it. Messages a state does not handle are passed on to the user's callbacks
as unknown messages.

## What this package does not do

There is no network server, handshake or chunk stream layer here. A
`Stream` and a `Streams` table work on a connection object that you
supply: it must provide `config` (with `control_state.max_message_streams`
and `response_preset`), `streams`, `streamer` (whose `write(...)` sends
messages and which holds `self_state` and `peer_state`), `handler` (the
user callbacks) and `logger`. There is no command-line program.

## Running the tests

```
pip install .[test]
pytest
```