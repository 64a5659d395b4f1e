"""Tunnel manager configuration model."""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_TUNNEL_DIR = Path.home() / ".iap_tunnel" / "tunnels"

TUNNEL_DIR_ENV = "IAP_TUNNEL_DIR"
GCLOUD_PATH_ENV = "IAP_TUNNEL_GCLOUD"


class TunnelManagerConfig(BaseModel):
    """Configuration for creating and managing IAP tunnels."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    tunnel_dir: Path = Field(
        default=DEFAULT_TUNNEL_DIR, description="Directory holding persisted tunnels"
    )
    gcloud_path: str = Field(
        default="gcloud", min_length=1, description="Tunneling executable name or path"
    )
    default_timeout: float = Field(
        default=30.0, gt=0, le=600, description="Readiness timeout in seconds"
    )
    poll_interval: float = Field(
        default=0.5, gt=0, le=10, description="Delay between readiness probes"
    )
    connect_timeout: float = Field(
        default=1.0, gt=0, le=30, description="Timeout of a single probe connect"
    )
    stop_timeout: float = Field(
        default=5.0, gt=0, le=60, description="Wait for a tunnel process to exit"
    )
    default_remote_port: int = Field(
        default=22, ge=1, le=65535, description="Remote port when none is given"
    )

    @field_validator("tunnel_dir")
    @classmethod
    def expand_tunnel_dir(cls, v: Path) -> Path:
        """Expand ``~`` in the tunnel directory."""
        return v.expanduser()

    @classmethod
    def from_env(cls, **overrides: object) -> "TunnelManagerConfig":
        """Build configuration from ``IAP_TUNNEL_*`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        values: dict[str, object] = {}
        if tunnel_dir := os.environ.get(TUNNEL_DIR_ENV):
            values["tunnel_dir"] = Path(tunnel_dir)
        if gcloud_path := os.environ.get(GCLOUD_PATH_ENV):
            values["gcloud_path"] = gcloud_path
        values.update(overrides)
        return cls.model_validate(values)
