"""Tunnel models.

``TunnelRecord`` is the live, in-process view of one tunnel and owns its
subprocess. ``PersistedTunnel`` is the versioned on-disk snapshot of a
record; it carries no liveness information.
"""

import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

from ..common.logging import get_logger
from .process import TunnelProcess
from .readiness import probe_port

logger = get_logger(__name__)

# Cloud resource names: letters, digits, '-', '_', '.', and ':' for
# domain-scoped project ids
RESOURCE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:\-]*$")
MAX_RESOURCE_NAME_LENGTH = 128

SCHEMA_VERSION = 1
DEFAULT_REMOTE_PORT = 22


def _now() -> datetime:
    return datetime.now().astimezone()


class TunnelStatus(str, Enum):
    """Tunnel status enumeration."""

    ACTIVE = "active"
    STOPPED = "stopped"
    ERROR = "error"


class TunnelTarget(BaseModel):
    """Remote endpoint of a tunnel."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    project: str = Field(min_length=1, max_length=MAX_RESOURCE_NAME_LENGTH)
    zone: str = Field(min_length=1, max_length=MAX_RESOURCE_NAME_LENGTH)
    instance_name: str = Field(min_length=1, max_length=MAX_RESOURCE_NAME_LENGTH)

    @field_validator("project", "zone", "instance_name")
    @classmethod
    def validate_resource_name(cls, v: str) -> str:
        """Restrict names to characters that need no shell quoting."""
        if not RESOURCE_NAME_PATTERN.match(v):
            raise ValueError(
                "Name must start with a letter or digit and contain only "
                "letters, digits, '-', '_', '.' and ':'"
            )
        return v

    def __str__(self) -> str:
        return f"{self.project}/{self.zone}/{self.instance_name}"


class TunnelRecord(BaseModel):
    """One forwarding tunnel bound to its subprocess.

    Status is never stored: process liveness and port reachability change
    without notice, so ``get_status`` derives it on every call.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1, description="OS process id of the tunnel subprocess")
    target: TunnelTarget
    local_port: int = Field(ge=1, le=65535, description="Local listening port")
    remote_port: int = Field(
        default=DEFAULT_REMOTE_PORT, ge=1, le=65535, description="Port on the target"
    )
    created_at: datetime = Field(default_factory=_now)
    log_file: Path | None = Field(
        default=None, description="File receiving the tunnel's diagnostic output"
    )

    _process: TunnelProcess | None = PrivateAttr(default=None)

    @classmethod
    def from_process(
        cls,
        process: TunnelProcess,
        target: TunnelTarget,
        local_port: int,
        remote_port: int,
        created_at: datetime | None = None,
    ) -> "TunnelRecord":
        """Build a record owning ``process``; its id is the process id."""
        data: dict[str, Any] = {
            "id": process.pid,
            "target": target,
            "local_port": local_port,
            "remote_port": remote_port,
            "log_file": process.log_file,
        }
        if created_at is not None:
            data["created_at"] = created_at
        record = cls(**data)
        record._process = process
        return record

    @property
    def process(self) -> TunnelProcess | None:
        return self._process

    @property
    def endpoint(self) -> str:
        return f"localhost:{self.local_port}"

    def get_status(self, connect_timeout: float = 1.0) -> TunnelStatus:
        """Compute the current tunnel status. Has no side effects."""
        if self._process is None:
            return TunnelStatus.ERROR

        if not self._process.is_running():
            return TunnelStatus.STOPPED

        if probe_port(self.local_port, timeout=connect_timeout):
            return TunnelStatus.ACTIVE
        return TunnelStatus.ERROR

    def stop(self, force: bool = True, timeout: float = 5.0) -> bool:
        """Stop the tunnel subprocess. Idempotent.

        Returns:
            True if the process is confirmed dead
        """
        if self._process is None:
            return True

        stopped = self._process.stop(force=force, timeout=timeout)
        if not stopped:
            logger.warning(
                "Tunnel process could not be confirmed dead",
                tunnel_id=self.id,
                force=force,
            )
        return stopped

    def to_persisted(self) -> "PersistedTunnel":
        create_time = self._process.create_time if self._process else None
        return PersistedTunnel(
            id=self.id,
            instance_name=self.target.instance_name,
            project=self.target.project,
            zone=self.target.zone,
            local_port=self.local_port,
            remote_port=self.remote_port,
            process_id=self.id,
            created=self.created_at,
            process_create_time=create_time,
            log_file=self.log_file,
        )

    def info(self) -> dict[str, Any]:
        """Summarize the tunnel, including its current status."""
        return {
            "id": self.id,
            "project": self.target.project,
            "zone": self.target.zone,
            "instance_name": self.target.instance_name,
            "local_port": self.local_port,
            "remote_port": self.remote_port,
            "endpoint": self.endpoint,
            "status": self.get_status().value,
            "created_at": self.created_at.isoformat(),
        }


class PersistedTunnel(BaseModel):
    """On-disk snapshot of a tunnel record.

    Field aliases are the on-disk names. Unknown fields are ignored and
    optional fields fall back to defaults; anything else that fails
    validation makes the whole record invalid.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    schema_version: int = Field(default=SCHEMA_VERSION, alias="SchemaVersion")
    id: int = Field(ge=1)
    instance_name: str = Field(min_length=1, alias="InstanceName")
    project: str = Field(min_length=1, alias="Project")
    zone: str = Field(min_length=1, alias="Zone")
    local_port: int = Field(ge=1, le=65535, alias="LocalPort")
    remote_port: int = Field(
        default=DEFAULT_REMOTE_PORT, ge=1, le=65535, alias="RemotePort"
    )
    process_id: int = Field(ge=1, alias="ProcessId")
    created: datetime = Field(default_factory=_now, alias="Created")
    process_create_time: float | None = Field(default=None, alias="ProcessCreateTime")
    log_file: Path | None = Field(default=None, alias="LogFile")

    @model_validator(mode="before")
    @classmethod
    def default_id_to_process_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("id") is None:
            process_id = data.get("ProcessId", data.get("process_id"))
            if process_id is not None:
                data = {**data, "id": process_id}
        return data

    @field_validator("created")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as local time."""
        return v if v.tzinfo is not None else v.astimezone()

    @model_validator(mode="after")
    def check_ids_match(self) -> "PersistedTunnel":
        if self.id != self.process_id:
            raise ValueError(
                f"id {self.id} does not match ProcessId {self.process_id}"
            )
        if self.schema_version > SCHEMA_VERSION:
            raise ValueError(f"Unsupported schema version {self.schema_version}")
        return self

    @property
    def target(self) -> TunnelTarget:
        return TunnelTarget(
            project=self.project, zone=self.zone, instance_name=self.instance_name
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
