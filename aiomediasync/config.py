"""Server configuration, read from ``MEDIASYNC_*`` environment variables or a ``.env`` file."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class ServerSettings(BaseSettings):
    """Network, authentication and timing settings of a MediaSyncServer."""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, description="HTTP and WebSocket port")
    admin_key: str | None = Field(
        default=None,
        description="Shared secret expected in the x-admin-key header; admin routes are open when unset",
    )
    plugin_token: str | None = Field(
        default=None,
        description="Shared secret plugins pass as token, key or auth; the bridge is open when unset",
    )
    media_ttl_ms: float = Field(
        default=15 * 60 * 1000, description="Idle time (ms) after which media state is pruned"
    )
    heartbeat_interval: float = Field(
        default=5.0, description="Seconds between PING messages to browser clients"
    )
    min_token_length: int = Field(
        default=3, description="Shortest token the default validator accepts"
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range (0 picks a free port)."""
        if not 0 <= v <= 65535:
            raise ValueError("Port must be between 0 and 65535")
        return v

    @field_validator("media_ttl_ms", "heartbeat_interval")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v

    model_config = {
        "env_prefix": "MEDIASYNC_",
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }
