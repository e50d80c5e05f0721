"""
Messages sent from the server to game-server plugins on the plugin bridge.

Plugins send plain JSON objects whose ``type`` names an admin operation (for
example ``VIDEO_PLAY`` or ``SET_REGION``) and whose other keys are the request
body. Each request is answered with a ``PLUGIN_RESPONSE`` carrying the same
``id`` (or ``correlationId``) the plugin sent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from mashumaro.types import Alias

from .types import ServerMessage


# Server -> Plugin: PLUGIN_HELLO
@dataclass
class PluginHelloMessage(ServerMessage):
    """Greeting with a snapshot of all live browser connections."""

    server_epoch_ms: Annotated[float, Alias("serverEpochMs")]
    connections: list[dict[str, Any]] = field(default_factory=list)
    type: Literal["PLUGIN_HELLO"] = "PLUGIN_HELLO"


# Server -> Plugin: PONG
@dataclass
class PluginPongMessage(ServerMessage):
    """Answer to a plugin PING."""

    server_epoch_ms: Annotated[float, Alias("serverEpochMs")]
    correlation_id: Annotated[Any, Alias("id")] = None
    type: Literal["PONG"] = "PONG"


# Server -> Plugin: PLUGIN_RESPONSE
@dataclass
class PluginResponseMessage(ServerMessage):
    """Result of a plugin request, mirroring the HTTP status and body."""

    status: int
    ok: bool
    correlation_id: Annotated[Any, Alias("id")] = None
    body: Any = None
    type: Literal["PLUGIN_RESPONSE"] = "PLUGIN_RESPONSE"

    @classmethod
    def from_result(
        cls, correlation_id: Any, status: int, body: Any = None
    ) -> PluginResponseMessage:
        """Build a response; ``ok`` is derived from the status."""
        return cls(
            status=status,
            ok=200 <= status < 300,
            correlation_id=correlation_id,
            body=body,
        )
