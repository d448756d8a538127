"""Server information sent to clients in reply to connect."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from rtmpkit.commands import NetConnectionConnectResultProperties


def _default_properties() -> NetConnectionConnectResultProperties:
    return NetConnectionConnectResultProperties(
        fms_ver="RTMPKIT/0,0,0,0",
        capabilities=31,
        mode=1,
    )


def _default_data() -> dict[str, Any]:
    return {"type": "rtmpkit", "version": "master"}


@dataclass
class ResponsePreset:
    """Properties and data a server reports when a client connects.

    Replace it in a connection's configuration to change what the server
    tells clients about itself.
    """

    server_connect_result_properties: NetConnectionConnectResultProperties = field(
        default_factory=_default_properties
    )
    server_connect_result_data: dict[str, Any] = field(default_factory=_default_data)


def default_response_preset() -> ResponsePreset:
    """Return a new preset holding the default server information."""
    return ResponsePreset()


DEFAULT_RESPONSE_PRESET = default_response_preset()