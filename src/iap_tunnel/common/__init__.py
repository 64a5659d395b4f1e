"""Common utilities and shared functionality."""

from .exceptions import IAPTunnelError
from .logging import get_logger, setup_logging
from .utils import MAX_PORT, MIN_PORT, validate_port

__all__ = [
    # Exceptions
    "IAPTunnelError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "MIN_PORT",
    "MAX_PORT",
]
