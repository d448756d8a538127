"""RTMP message codec, AMF0 command bodies and server-side stream state handling."""

__version__ = "0.1.0"