"""The table of message streams of a connection."""

from __future__ import annotations

import threading
from typing import Any

from rtmpkit.stream import Stream

CONTROL_STREAM_ID = 0


class Streams:
    """Message streams of a connection, limited by its configuration."""

    def __init__(self, conn: Any) -> None:
        self.conn = conn
        self._streams: dict[int, Stream] = {}
        self._lock = threading.Lock()

    @property
    def _limit(self) -> int:
        return self.conn.config.control_state.max_message_streams

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)

    def __contains__(self, stream_id: object) -> bool:
        with self._lock:
            return stream_id in self._streams

    def create(self, stream_id: int) -> Stream:
        """Create and register the stream stream_id."""
        with self._lock:
            if stream_id in self._streams:
                raise ValueError(f"Stream already exists: StreamID = {stream_id}")
            if len(self._streams) >= self._limit:
                raise ValueError(
                    f"Creating message streams limit exceeded: Limit = {self._limit}"
                )
            stream = Stream(stream_id, self.conn)
            self._streams[stream_id] = stream
            return stream

    def create_if_available(self) -> Stream:
        """Create a stream with the lowest free id."""
        for stream_id in range(self._limit):
            try:
                return self.create(stream_id)
            except ValueError:
                continue
        raise ValueError(f"Creating streams limit exceeded: Limit = {self._limit}")

    def delete(self, stream_id: int) -> None:
        """Remove a stream and mark it closed."""
        with self._lock:
            stream = self._streams.pop(stream_id, None)
        if stream is None:
            raise KeyError(f"Stream not exists: StreamID = {stream_id}")
        stream._assume_closed()

    def at(self, stream_id: int) -> Stream:
        with self._lock:
            try:
                return self._streams[stream_id]
            except KeyError:
                raise KeyError(f"Stream is not found: StreamID = {stream_id}") from None