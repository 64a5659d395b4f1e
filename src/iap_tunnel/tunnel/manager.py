"""Tunnel manager for lifecycle management."""

from ..common.logging import get_logger
from .config import TunnelManagerConfig
from .exceptions import (
    PersistenceWarning,
    TerminationWarning,
    TunnelError,
    TunnelNotFoundError,
)
from .launcher import TunnelLauncher
from .models import TunnelRecord, TunnelStatus, TunnelTarget
from .ports import AUTO_PORT, allocate_local_port
from .process import TunnelProcess
from .readiness import wait_until_ready
from .registry import TunnelRegistry, remove_log_file
from .store import TunnelStore

logger = get_logger(__name__)


class TunnelManager:
    """Creates, lists and removes IAP tunnels.

    One manager is meant to exist per process; it owns the in-memory
    registry and shares the tunnel directory with other processes.
    """

    def __init__(self, config: TunnelManagerConfig | None = None):
        """Initialize tunnel manager.

        Args:
            config: Manager configuration (read from the environment if None)
        """
        self.config = config or TunnelManagerConfig.from_env()
        self.store = TunnelStore(self.config.tunnel_dir)
        self.registry = TunnelRegistry(self.store)
        self.launcher = TunnelLauncher(
            self.config.gcloud_path, log_dir=self.store.log_dir
        )
        logger.info(
            "Initialized TunnelManager",
            tunnel_dir=str(self.config.tunnel_dir),
            gcloud_path=self.config.gcloud_path,
        )

    def create_tunnel(
        self,
        target: TunnelTarget,
        local_port: int = AUTO_PORT,
        remote_port: int | None = None,
        timeout: float | None = None,
        show_window: bool = False,
        reuse: bool = True,
        tunnel_id: int | None = None,
    ) -> TunnelRecord:
        """Create a tunnel to ``target``, or reuse an active one.

        Args:
            target: Remote instance to tunnel to
            local_port: Local port to bind (0 picks a free port)
            remote_port: Port on the instance (config default if None)
            timeout: Readiness timeout in seconds (config default if None)
            show_window: Run the tunnel with a visible console
            reuse: Return an active tunnel to the same target if one exists
            tunnel_id: Reuse this tunnel if it is still active

        Returns:
            A tunnel that accepts connections on its local port

        Raises:
            TunnelNotFoundError: If ``tunnel_id`` is unknown
            LaunchError: If the tunneling executable cannot be started
            TunnelStartupError: If the tunnel exits before becoming ready
            TunnelTimeoutError: If the tunnel is not ready within ``timeout``
        """
        if remote_port is None:
            remote_port = self.config.default_remote_port
        if timeout is None:
            timeout = self.config.default_timeout

        if tunnel_id is not None:
            existing = self.registry.get(tunnel_id)
            if existing is None:
                raise TunnelNotFoundError(f"Tunnel {tunnel_id} not found")
            if existing.get_status(self.config.connect_timeout) == TunnelStatus.ACTIVE:
                logger.info("Reusing tunnel", tunnel_id=tunnel_id)
                return existing

            logger.info("Replacing inactive tunnel", tunnel_id=tunnel_id)
            self._remove_record(existing, force=True)
            target = existing.target
            local_port = existing.local_port
            remote_port = existing.remote_port
        elif reuse:
            active = self._find_active(target, local_port, remote_port)
            if active is not None:
                logger.info(
                    "Reusing active tunnel", tunnel_id=active.id, target=str(target)
                )
                return active

        return self._start_tunnel(target, local_port, remote_port, timeout, show_window)

    def _find_active(
        self, target: TunnelTarget, local_port: int, remote_port: int
    ) -> TunnelRecord | None:
        for record in self.registry.find_by_target(target):
            if record.remote_port != remote_port:
                continue
            if local_port != AUTO_PORT and record.local_port != local_port:
                continue
            if record.get_status(self.config.connect_timeout) == TunnelStatus.ACTIVE:
                return record
        return None

    def _start_tunnel(
        self,
        target: TunnelTarget,
        local_port: int,
        remote_port: int,
        timeout: float,
        show_window: bool,
    ) -> TunnelRecord:
        port = allocate_local_port(local_port)
        process = self.launcher.launch(target, port, remote_port, show_window)

        try:
            wait_until_ready(
                process,
                port,
                timeout=timeout,
                interval=self.config.poll_interval,
                connect_timeout=self.config.connect_timeout,
            )
            record = TunnelRecord.from_process(
                process, target=target, local_port=port, remote_port=remote_port
            )
        except BaseException:
            self._discard_process(process)
            raise

        persisted = self.store.save(record)
        if not persisted:
            logger.warning("Tunnel will not survive a restart", tunnel_id=record.id)
        # A concurrent reconcile may have adopted the saved record already
        record = self.registry.add(record, persisted=persisted)

        logger.info(
            "Created tunnel",
            tunnel_id=record.id,
            target=str(target),
            local_port=port,
            remote_port=remote_port,
        )
        return record

    def _discard_process(self, process: TunnelProcess) -> None:
        if not process.stop(force=True, timeout=self.config.stop_timeout):
            logger.warning(
                "Failed tunnel process could not be confirmed dead", pid=process.pid
            )
        remove_log_file(process.log_file)

    def list_tunnels(
        self,
        tunnel_id: int | None = None,
        project: str | None = None,
        zone: str | None = None,
        instance_name: str | None = None,
        local_port: int | None = None,
        remote_port: int | None = None,
        status: TunnelStatus | None = None,
    ) -> list[TunnelRecord]:
        """List known tunnels matching all given filters."""
        return self.registry.list(
            tunnel_id=tunnel_id,
            project=project,
            zone=zone,
            instance_name=instance_name,
            local_port=local_port,
            remote_port=remote_port,
            status=status,
            connect_timeout=self.config.connect_timeout,
        )

    def get_tunnel(self, tunnel_id: int) -> TunnelRecord | None:
        return self.registry.get(tunnel_id)

    def remove_tunnel(
        self,
        selector: TunnelRecord | int | None = None,
        *,
        project: str | None = None,
        zone: str | None = None,
        instance_name: str | None = None,
        force: bool = True,
    ) -> list[TunnelError]:
        """Stop and forget the selected tunnels.

        Args:
            selector: A tunnel record or tunnel id
            project: Select tunnels to this project
            zone: Select tunnels to this zone
            instance_name: Select tunnels to this instance
            force: Kill tunnels that do not terminate in time

        Returns:
            One error per tunnel that could not be cleaned up completely

        Raises:
            ValueError: If neither a selector nor a filter is given
        """
        if selector is None and not (project or zone or instance_name):
            raise ValueError("remove_tunnel needs a tunnel, a tunnel id or a filter")

        if isinstance(selector, TunnelRecord):
            records = [selector]
        else:
            records = self.list_tunnels(
                tunnel_id=selector,
                project=project,
                zone=zone,
                instance_name=instance_name,
            )

        return self._remove_records(records, force)

    def remove_all_tunnels(self, force: bool = True) -> list[TunnelError]:
        """Stop and forget every known tunnel."""
        return self._remove_records(self.list_tunnels(), force)

    def _remove_records(
        self, records: list[TunnelRecord], force: bool
    ) -> list[TunnelError]:
        errors: list[TunnelError] = []
        for record in records:
            try:
                errors.extend(self._remove_record(record, force))
            except Exception as e:
                logger.error("Error removing tunnel", tunnel_id=record.id, error=str(e))
                errors.append(TunnelError(f"Failed to remove tunnel {record.id}: {e}"))

        logger.info("Removed tunnels", count=len(records), failures=len(errors))
        return errors

    def _remove_record(self, record: TunnelRecord, force: bool) -> list[TunnelError]:
        errors: list[TunnelError] = []

        try:
            stopped = record.stop(force=force, timeout=self.config.stop_timeout)
        except Exception as e:
            logger.error("Error stopping tunnel", tunnel_id=record.id, error=str(e))
            errors.append(TunnelError(f"Failed to stop tunnel {record.id}: {e}"))
        else:
            if not stopped:
                errors.append(
                    TerminationWarning(
                        f"Tunnel {record.id} process could not be confirmed dead",
                        tunnel_id=record.id,
                    )
                )

        # File, log and registry entry go regardless of how the stop went
        if not self.store.remove(record.id):
            errors.append(
                PersistenceWarning(
                    f"Tunnel {record.id} record could not be deleted",
                    tunnel_id=record.id,
                )
            )

        remove_log_file(record.log_file)
        self.registry.discard(record.id)
        logger.info("Removed tunnel", tunnel_id=record.id)
        return errors
