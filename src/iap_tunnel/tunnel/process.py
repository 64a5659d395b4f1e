"""Handle for a running tunnel subprocess."""

import os
import subprocess
from pathlib import Path

import psutil

from ..common.logging import get_logger

logger = get_logger(__name__)

# Tolerance when comparing recorded and live process creation times
CREATE_TIME_TOLERANCE = 1.0

DIAGNOSTICS_MAX_BYTES = 4096


class TunnelProcess:
    """Owns one tunnel subprocess.

    The process is either a child spawned by this program (backed by
    ``subprocess.Popen``) or a process adopted from a persisted record after
    a restart (backed by ``psutil.Process``).
    """

    def __init__(
        self,
        popen: subprocess.Popen[bytes] | None = None,
        process: psutil.Process | None = None,
        log_file: Path | None = None,
    ):
        if popen is None and process is None:
            raise ValueError("TunnelProcess needs a Popen or a psutil.Process")
        self._popen = popen
        self._process = process
        self.log_file = log_file

    @classmethod
    def attach(
        cls,
        pid: int,
        create_time: float | None = None,
        log_file: Path | None = None,
    ) -> "TunnelProcess | None":
        """Adopt a running process by pid.

        Returns None when the pid does not exist, is a zombie, or was started
        at a different time than ``create_time`` (the OS reused the pid).
        """
        try:
            process = psutil.Process(pid)
            if process.status() == psutil.STATUS_ZOMBIE:
                return None
            if (
                create_time is not None
                and abs(process.create_time() - create_time) > CREATE_TIME_TOLERANCE
            ):
                logger.debug("Process id reused", pid=pid)
                return None
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return None
        except psutil.AccessDenied:
            # Alive, but its details cannot be read
            pass
        return cls(process=process, log_file=log_file)

    @property
    def pid(self) -> int:
        if self._popen is not None:
            return self._popen.pid
        assert self._process is not None
        return self._process.pid

    @property
    def create_time(self) -> float | None:
        """OS creation time of the process, None if it cannot be read."""
        try:
            if self._process is None:
                self._process = psutil.Process(self.pid)
            return self._process.create_time()
        except (psutil.Error, TypeError, ValueError):
            return None

    @property
    def returncode(self) -> int | None:
        if self._popen is not None:
            return self._popen.poll()
        return None

    def is_running(self) -> bool:
        """Check if the process is alive. Zombies count as exited."""
        if self._popen is not None:
            return self._popen.poll() is None

        assert self._process is not None
        try:
            return (
                self._process.is_running()
                and self._process.status() != psutil.STATUS_ZOMBIE
            )
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return False
        except psutil.AccessDenied:
            return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the process exits.

        Returns:
            True if the process exited, False if the timeout expired first
        """
        try:
            if self._popen is not None:
                self._popen.wait(timeout=timeout)
            else:
                assert self._process is not None
                self._process.wait(timeout=timeout)
        except (subprocess.TimeoutExpired, psutil.TimeoutExpired):
            return False
        except psutil.NoSuchProcess:
            pass
        return True

    def terminate(self) -> None:
        if self._popen is not None:
            self._popen.terminate()
        else:
            assert self._process is not None
            self._process.terminate()

    def kill(self) -> None:
        if self._popen is not None:
            self._popen.kill()
        else:
            assert self._process is not None
            self._process.kill()

    def stop(self, force: bool = True, timeout: float = 5.0) -> bool:
        """Stop the process, escalating to a kill when ``force`` is set.

        Returns:
            True if the process is confirmed dead, False otherwise
        """
        if not self.is_running():
            logger.debug("Process not running, nothing to stop", pid=self.pid)
            return True

        logger.info("Stopping tunnel process", pid=self.pid)
        try:
            self.terminate()
            if self.wait(timeout):
                logger.info("Tunnel process terminated gracefully", pid=self.pid)
                return True

            if not force:
                logger.warning(
                    "Process did not terminate within timeout",
                    pid=self.pid,
                    timeout=timeout,
                )
                return False

            logger.warning(
                "Process did not terminate gracefully, force killing", pid=self.pid
            )
            self.kill()
            return self.wait(timeout)
        except (psutil.NoSuchProcess, ProcessLookupError):
            return True
        except (OSError, psutil.Error) as e:
            logger.error("Error stopping process", pid=self.pid, error=str(e))
            return not self.is_running()

    def read_diagnostics(self, max_bytes: int = DIAGNOSTICS_MAX_BYTES) -> str:
        """Return the tail of the captured diagnostic output."""
        if self.log_file is None:
            return ""
        try:
            with open(self.log_file, "rb") as f:
                f.seek(0, os.SEEK_END)
                size = f.tell()
                f.seek(max(0, size - max_bytes))
                return f.read().decode("utf-8", errors="replace")
        except OSError:
            return ""

    def __repr__(self) -> str:
        kind = "child" if self._popen is not None else "adopted"
        return f"TunnelProcess(pid={self.pid}, {kind})"
