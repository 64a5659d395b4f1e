"""Local port allocation."""

import socket

from ..common.logging import get_logger
from ..common.utils import validate_port

logger = get_logger(__name__)

AUTO_PORT = 0


def allocate_local_port(requested_port: int = AUTO_PORT) -> int:
    """Pick the local port a tunnel should bind.

    A non-zero ``requested_port`` is returned unchanged; whether it is free
    is left to the tunnel subprocess. With ``0`` the OS assigns an ephemeral
    port, which may be taken again before the subprocess binds it.

    Raises:
        ValueError: If ``requested_port`` is outside 0-65535
    """
    if requested_port != AUTO_PORT:
        validate_port(requested_port, "Local port")
        return requested_port

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("", 0))
        port: int = sock.getsockname()[1]

    logger.debug("Allocated local port", local_port=port)
    return port
