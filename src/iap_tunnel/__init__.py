"""IAP tunnel manager - reusable forwarding tunnels to cloud instances."""

from . import tunnel
from .api import managed_tunnel
from .common.exceptions import IAPTunnelError
from .common.logging import get_logger, setup_logging
from .common.utils import validate_port
from .tunnel import (
    LaunchError,
    PersistenceWarning,
    TerminationWarning,
    TunnelError,
    TunnelManager,
    TunnelManagerConfig,
    TunnelNotFoundError,
    TunnelRecord,
    TunnelStartupError,
    TunnelStatus,
    TunnelTarget,
    TunnelTimeoutError,
    TunnelWarning,
)

# Setup logging on package initialization
setup_logging()

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "managed_tunnel",
    # Tunnel management
    "TunnelManager",
    "TunnelManagerConfig",
    "TunnelRecord",
    "TunnelStatus",
    "TunnelTarget",
    # Exceptions
    "IAPTunnelError",
    "TunnelError",
    "LaunchError",
    "TunnelStartupError",
    "TunnelTimeoutError",
    "TunnelNotFoundError",
    "TunnelWarning",
    "PersistenceWarning",
    "TerminationWarning",
    # Utilities
    "get_logger",
    "setup_logging",
    "validate_port",
    "tunnel",
]
