"""Tunnel lifecycle management for IAP forwarding tunnels."""

# Config
from .config import TunnelManagerConfig

# Exceptions
from .exceptions import (
    LaunchError,
    PersistenceWarning,
    StaleRecordError,
    TerminationWarning,
    TunnelError,
    TunnelNotFoundError,
    TunnelStartupError,
    TunnelTimeoutError,
    TunnelWarning,
)

# Process launching and readiness
from .launcher import TunnelLauncher

# Manager
from .manager import TunnelManager

# Models
from .models import PersistedTunnel, TunnelRecord, TunnelStatus, TunnelTarget
from .ports import allocate_local_port
from .process import TunnelProcess
from .readiness import probe_port, wait_until_ready

# Registry
from .registry import TunnelRegistry
from .store import TunnelStore

__all__ = [
    # Models
    "TunnelTarget",
    "TunnelStatus",
    "TunnelRecord",
    "PersistedTunnel",
    "TunnelManagerConfig",
    # Manager
    "TunnelManager",
    "TunnelRegistry",
    "TunnelStore",
    "TunnelProcess",
    "TunnelLauncher",
    "allocate_local_port",
    "probe_port",
    "wait_until_ready",
    # Exceptions
    "TunnelError",
    "LaunchError",
    "TunnelStartupError",
    "TunnelTimeoutError",
    "TunnelNotFoundError",
    "StaleRecordError",
    "TunnelWarning",
    "PersistenceWarning",
    "TerminationWarning",
]
