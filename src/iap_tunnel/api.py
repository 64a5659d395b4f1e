"""High-level API for IAP tunnels.

This module provides simple, user-friendly helpers for common tunneling tasks.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from .common.logging import get_logger
from .tunnel import TunnelManager, TunnelRecord, TunnelTarget

logger = get_logger(__name__)


@contextmanager
def managed_tunnel(
    manager: TunnelManager,
    project: str,
    zone: str,
    instance_name: str,
    *,
    keep: bool = False,
    **kwargs: Any,
) -> Iterator[TunnelRecord]:
    """Context manager yielding a ready tunnel to an instance.

    The tunnel is removed on exit unless ``keep`` is set. A reused tunnel
    that was already active before entering is never removed.

    Args:
        manager: Tunnel manager to create the tunnel with
        project: Project of the instance
        zone: Zone of the instance
        instance_name: Name of the instance
        keep: Leave the tunnel running on exit
        **kwargs: Passed to TunnelManager.create_tunnel

    Example:
        >>> manager = TunnelManager()
        >>> with managed_tunnel(manager, "my-project", "us-central1-a", "vm1") as t:
        ...     ssh_to(t.endpoint)
    """
    target = TunnelTarget(project=project, zone=zone, instance_name=instance_name)
    known_ids = {record.id for record in manager.list_tunnels()}
    tunnel = manager.create_tunnel(target, **kwargs)
    created = tunnel.id not in known_ids

    try:
        yield tunnel
    finally:
        if created and not keep:
            for error in manager.remove_tunnel(tunnel):
                logger.error("Error during tunnel cleanup", error=str(error))
