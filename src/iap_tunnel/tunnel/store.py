"""File-based store of tunnel records.

One JSON file per tunnel id lives in the tunnel directory. Only the process
owning a tunnel writes its file; any process may delete a file once it has
shown, through the OS process table, that the tunnel process is gone.
"""

import json
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from ..common.logging import get_logger
from .exceptions import PersistenceWarning, StaleRecordError
from .models import PersistedTunnel, TunnelRecord
from .process import TunnelProcess

logger = get_logger(__name__)

RECORD_SUFFIX = ".json"
LOG_DIR_NAME = "logs"


class TunnelStore:
    """Persisted registry of tunnel records keyed by id."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    @property
    def log_dir(self) -> Path:
        return self.directory / LOG_DIR_NAME

    def path_for(self, tunnel_id: int) -> Path:
        return self.directory / f"{tunnel_id}{RECORD_SUFFIX}"

    def owned_log_file(self, log_file: Path | None) -> Path | None:
        """Return ``log_file`` if it lies directly inside ``log_dir``.

        Log paths come from files on disk; anything outside the log
        directory is never read or deleted.
        """
        if log_file is None:
            return None
        try:
            inside = log_file.resolve().parent == self.log_dir.resolve()
        except (OSError, RuntimeError):
            inside = False
        if not inside:
            logger.warning(
                "Ignoring tunnel log outside the log directory", path=str(log_file)
            )
            return None
        return log_file

    def save(self, record: TunnelRecord) -> bool:
        """Write ``record`` to its file, replacing any previous version.

        Returns:
            True if saved; False (logged as a warning) otherwise
        """
        path = self.path_for(record.id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            payload = record.to_persisted().to_json()
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{record.id}-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            warning = PersistenceWarning(
                f"Failed to save tunnel {record.id}: {e}", tunnel_id=record.id
            )
            logger.warning(str(warning), tunnel_id=record.id, path=str(path))
            return False

        logger.debug("Saved tunnel record", tunnel_id=record.id, path=str(path))
        return True

    def remove(self, tunnel_id: int) -> bool:
        """Delete the file for ``tunnel_id``. A missing file is not an error.

        Returns:
            True if the file is gone; False (logged as a warning) otherwise
        """
        path = self.path_for(tunnel_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            warning = PersistenceWarning(
                f"Failed to delete tunnel record {tunnel_id}: {e}",
                tunnel_id=tunnel_id,
            )
            logger.warning(str(warning), tunnel_id=tunnel_id, path=str(path))
            return False
        return True

    def load_all(self) -> list[TunnelRecord]:
        """Load every persisted record whose process is still alive.

        Corrupt files and files of dead processes are deleted on the way.
        """
        if not self.directory.is_dir():
            return []

        records: list[TunnelRecord] = []
        for path in sorted(self.directory.glob(f"*{RECORD_SUFFIX}")):
            try:
                persisted = self._read(path)
            except (OSError, ValueError, ValidationError) as e:
                logger.warning(
                    "Discarding unreadable tunnel record", path=str(path), error=str(e)
                )
                self._delete_file(path)
                continue

            log_file = self.owned_log_file(persisted.log_file)
            try:
                records.append(self._bind(persisted, log_file))
            except StaleRecordError as e:
                logger.debug("Removing stale tunnel record", reason=str(e))
                self._delete_file(path)
                if log_file is not None:
                    self._delete_file(log_file)

        return records

    def _read(self, path: Path) -> PersistedTunnel:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Tunnel record is not a JSON object")
        persisted = PersistedTunnel.model_validate(data)
        if path.stem != str(persisted.id):
            raise ValueError(f"File name does not match tunnel id {persisted.id}")
        # Validates the stored target names
        persisted.target
        return persisted

    def _bind(
        self, persisted: PersistedTunnel, log_file: Path | None
    ) -> TunnelRecord:
        process = TunnelProcess.attach(
            persisted.process_id,
            create_time=persisted.process_create_time,
            log_file=log_file,
        )
        if process is None:
            raise StaleRecordError(
                f"Tunnel {persisted.id} refers to process "
                f"{persisted.process_id}, which no longer exists"
            )
        return TunnelRecord.from_process(
            process,
            target=persisted.target,
            local_port=persisted.local_port,
            remote_port=persisted.remote_port,
            created_at=persisted.created,
        )

    def _delete_file(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "Failed to delete tunnel file", path=str(path), error=str(e)
            )
