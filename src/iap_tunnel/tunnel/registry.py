"""In-memory registry of active tunnels, reconciled against the store."""

import threading
from pathlib import Path

from ..common.logging import get_logger
from .models import TunnelRecord, TunnelStatus, TunnelTarget
from .store import TunnelStore

logger = get_logger(__name__)


class TunnelRegistry:
    """Authoritative runtime map of tunnels, keyed by tunnel id.

    Every query first reconciles the map with the persisted store: persisted
    tunnels missing from memory are adopted, and in-memory tunnels whose
    file has disappeared are dropped. Each registered tunnel gets a watcher
    thread that cleans up after its process exits.
    """

    def __init__(self, store: TunnelStore):
        self.store = store
        self._tunnels: dict[int, TunnelRecord] = {}
        # Tunnels whose record could not be saved; kept while their process lives
        self._unpersisted: set[int] = set()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tunnels)

    def __contains__(self, tunnel_id: object) -> bool:
        with self._lock:
            return tunnel_id in self._tunnels

    def add(self, record: TunnelRecord, persisted: bool = True) -> TunnelRecord:
        """Register ``record`` and watch its process.

        If a record with the same id is already registered it is kept and
        returned instead.
        """
        with self._lock:
            existing = self._tunnels.get(record.id)
            if existing is not None:
                logger.debug("Tunnel already registered", tunnel_id=record.id)
                return existing

            self._tunnels[record.id] = record
            if persisted:
                self._unpersisted.discard(record.id)
            else:
                self._unpersisted.add(record.id)
            self._start_watcher(record)

        logger.info("Registered tunnel", tunnel_id=record.id, target=str(record.target))
        return record

    def discard(self, tunnel_id: int) -> TunnelRecord | None:
        """Forget ``tunnel_id``. Unknown ids are ignored."""
        with self._lock:
            self._unpersisted.discard(tunnel_id)
            record = self._tunnels.pop(tunnel_id, None)

        if record is not None:
            logger.debug("Discarded tunnel from registry", tunnel_id=tunnel_id)
        return record

    def get(self, tunnel_id: int) -> TunnelRecord | None:
        """Look up a tunnel after reconciling."""
        self.reconcile()
        with self._lock:
            return self._tunnels.get(tunnel_id)

    def reconcile(self) -> list[TunnelRecord]:
        """Merge persisted tunnels into memory, then prune what the store lacks.

        Returns:
            Snapshot of the registered tunnels after reconciliation
        """
        persisted = self.store.load_all()
        persisted_ids = {record.id for record in persisted}

        with self._lock:
            for record in persisted:
                if record.id not in self._tunnels:
                    logger.info(
                        "Recovered persisted tunnel",
                        tunnel_id=record.id,
                        target=str(record.target),
                    )
                    self.add(record)

            for tunnel_id in list(self._tunnels):
                if tunnel_id in persisted_ids:
                    continue
                record = self._tunnels[tunnel_id]
                if tunnel_id in self._unpersisted and _is_running(record):
                    continue
                logger.info("Pruning tunnel without persisted record", tunnel_id=tunnel_id)
                self.discard(tunnel_id)

            return list(self._tunnels.values())

    def list(
        self,
        tunnel_id: int | None = None,
        project: str | None = None,
        zone: str | None = None,
        instance_name: str | None = None,
        local_port: int | None = None,
        remote_port: int | None = None,
        status: TunnelStatus | None = None,
        connect_timeout: float = 1.0,
    ) -> list[TunnelRecord]:
        """List tunnels with optional filtering.

        The status filter probes each candidate and runs last.
        """
        tunnels = self.reconcile()

        if tunnel_id is not None:
            tunnels = [t for t in tunnels if t.id == tunnel_id]
        if project is not None:
            tunnels = [t for t in tunnels if t.target.project == project]
        if zone is not None:
            tunnels = [t for t in tunnels if t.target.zone == zone]
        if instance_name is not None:
            tunnels = [t for t in tunnels if t.target.instance_name == instance_name]
        if local_port is not None:
            tunnels = [t for t in tunnels if t.local_port == local_port]
        if remote_port is not None:
            tunnels = [t for t in tunnels if t.remote_port == remote_port]
        if status is not None:
            status = TunnelStatus(status)
            tunnels = [
                t for t in tunnels if t.get_status(connect_timeout) == status
            ]

        return sorted(tunnels, key=lambda t: t.created_at)

    # Quoted: inside the class body `list` is the method above
    def find_by_target(self, target: TunnelTarget) -> "list[TunnelRecord]":
        return self.list(
            project=target.project,
            zone=target.zone,
            instance_name=target.instance_name,
        )

    def _start_watcher(self, record: TunnelRecord) -> None:
        if record.process is None:
            return
        watcher = threading.Thread(
            target=self._watch,
            args=(record,),
            name=f"tunnel-watch-{record.id}",
            daemon=True,
        )
        watcher.start()

    def _watch(self, record: TunnelRecord) -> None:
        assert record.process is not None
        record.process.wait()
        logger.info("Tunnel process exited", tunnel_id=record.id)
        self._cleanup_exited(record)

    def _cleanup_exited(self, record: TunnelRecord) -> None:
        with self._lock:
            # The id may since belong to a different tunnel
            if self._tunnels.get(record.id) is not record:
                return
            self.store.remove(record.id)
            self.discard(record.id)
        remove_log_file(record.log_file)


def remove_log_file(log_file: Path | None) -> None:
    if log_file is None:
        return
    try:
        log_file.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to delete tunnel log", path=str(log_file), error=str(e))


def _is_running(record: TunnelRecord) -> bool:
    return record.process is not None and record.process.is_running()
