"""Readiness probing for freshly launched tunnels.

A tunnel subprocess may log for several seconds before it binds its local
listener, so its exit code says nothing about readiness. The only observable
signal that traffic will flow is a successful TCP connect to the local port.
"""

import math
import socket
import time

from ..common.logging import get_logger
from .exceptions import TunnelStartupError, TunnelTimeoutError
from .process import TunnelProcess

logger = get_logger(__name__)

PROBE_HOST = "localhost"


def probe_port(port: int, timeout: float = 1.0, host: str = PROBE_HOST) -> bool:
    """Attempt a single TCP connect to ``host:port``.

    The connection is closed immediately whatever the outcome.

    Returns:
        True if the port accepted the connection
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def wait_until_ready(
    process: TunnelProcess,
    local_port: int,
    timeout: float = 30.0,
    interval: float = 0.5,
    connect_timeout: float = 1.0,
) -> None:
    """Block until the tunnel accepts connections on ``local_port``.

    Args:
        process: Handle of the launched tunnel subprocess
        local_port: Local port the tunnel binds
        timeout: Overall time budget in seconds
        interval: Delay between probe attempts
        connect_timeout: Timeout of a single connect attempt

    Raises:
        TunnelStartupError: If the subprocess exits before becoming ready
        TunnelTimeoutError: If the port is not reachable within ``timeout``
        ValueError: If ``timeout`` or ``interval`` is not positive
    """
    if timeout <= 0:
        raise ValueError("timeout must be positive")
    if interval <= 0:
        raise ValueError("interval must be positive")

    max_attempts = max(1, math.ceil(timeout / interval))
    deadline = time.monotonic() + timeout
    logger.debug(
        "Waiting for tunnel readiness",
        pid=process.pid,
        local_port=local_port,
        timeout=timeout,
    )

    for attempt in range(1, max_attempts + 1):
        if not process.is_running():
            _raise_startup_error(process, local_port)

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break

        if probe_port(local_port, timeout=min(connect_timeout, remaining)):
            logger.info(
                "Tunnel is ready",
                pid=process.pid,
                local_port=local_port,
                attempts=attempt,
            )
            return

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(interval, remaining))

    if not process.is_running():
        _raise_startup_error(process, local_port)

    logger.warning(
        "Tunnel readiness timed out", pid=process.pid, local_port=local_port
    )
    raise TunnelTimeoutError(
        f"Tunnel on port {local_port} was not ready within {timeout:g}s",
        timeout=timeout,
    )


def _raise_startup_error(process: TunnelProcess, local_port: int) -> None:
    returncode = process.returncode
    diagnostics = process.read_diagnostics()
    logger.error(
        "Tunnel process exited before becoming ready",
        pid=process.pid,
        local_port=local_port,
        returncode=returncode,
    )
    raise TunnelStartupError(
        f"Tunnel process {process.pid} exited with code {returncode} "
        f"before port {local_port} became ready",
        diagnostics=diagnostics,
        returncode=returncode,
    )
