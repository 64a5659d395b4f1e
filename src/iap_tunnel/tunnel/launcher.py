"""Launching the ``gcloud compute start-iap-tunnel`` subprocess."""

import os
import shlex
import shutil
import subprocess
import sys
import uuid
from pathlib import Path

from ..common.logging import get_logger
from .exceptions import LaunchError
from .models import TunnelTarget
from .process import TunnelProcess

logger = get_logger(__name__)

IS_WINDOWS = sys.platform == "win32"

POWERSHELL_SUFFIXES = {".ps1"}
BATCH_SUFFIXES = {".cmd", ".bat"}
PYTHON_SUFFIXES = {".py"}

# With /s, cmd.exe strips exactly the outermost pair of quotes after /c
CMD_SWITCHES = ["/d", "/s", "/c"]


class TunnelLauncher:
    """Builds and starts tunnel subprocesses."""

    def __init__(self, executable: str = "gcloud", log_dir: Path | None = None):
        """Initialize the launcher.

        Args:
            executable: Name or path of the tunneling executable
            log_dir: Directory for per-tunnel diagnostic logs
        """
        self.executable = executable
        self.log_dir = log_dir

    def resolve_executable(self) -> Path:
        """Resolve the executable through PATH lookup and symlinks.

        Raises:
            LaunchError: If the executable cannot be found
        """
        found = shutil.which(self.executable)
        if found is None:
            candidate = Path(self.executable).expanduser()
            if not candidate.is_file():
                raise LaunchError(
                    f"Tunneling executable '{self.executable}' not found. "
                    "Install the Google Cloud SDK and make sure 'gcloud' is "
                    "on your PATH."
                )
            found = str(candidate)

        resolved = Path(found).resolve()
        if not resolved.is_file():
            raise LaunchError(f"Tunneling executable is not a file: {resolved}")
        return resolved

    @staticmethod
    def interpreter_prefix(path: Path) -> list[str]:
        """Return the interpreter invocation needed to run ``path``.

        Native binaries and directly executable scripts need none.
        """
        suffix = path.suffix.lower()
        if suffix in POWERSHELL_SUFFIXES:
            powershell = shutil.which("pwsh") or shutil.which("powershell")
            if powershell is None:
                raise LaunchError(f"PowerShell is required to run {path}")
            return [
                powershell,
                "-NoProfile",
                "-NonInteractive",
                "-ExecutionPolicy",
                "Bypass",
                "-File",
            ]
        if suffix in BATCH_SUFFIXES:
            return [os.environ.get("COMSPEC", "cmd.exe"), *CMD_SWITCHES]
        if suffix in PYTHON_SUFFIXES:
            return [sys.executable]

        if not IS_WINDOWS and not os.access(path, os.X_OK):
            interpreter = _read_shebang(path)
            if interpreter:
                return interpreter
            raise LaunchError(f"Tunneling executable is not executable: {path}")
        return []

    def build_command(
        self, target: TunnelTarget, local_port: int, remote_port: int
    ) -> list[str]:
        """Build the argument vector for the tunnel subprocess."""
        executable = self.resolve_executable()
        return [
            *self.interpreter_prefix(executable),
            str(executable),
            "compute",
            "start-iap-tunnel",
            target.instance_name,
            str(remote_port),
            f"--local-host-port=localhost:{local_port}",
            f"--zone={target.zone}",
            f"--project={target.project}",
        ]

    def new_log_file(self) -> Path | None:
        if self.log_dir is None:
            return None
        self.log_dir.mkdir(parents=True, exist_ok=True)
        return self.log_dir / f"tunnel-{uuid.uuid4().hex[:12]}.log"

    def launch(
        self,
        target: TunnelTarget,
        local_port: int,
        remote_port: int,
        show_window: bool = False,
    ) -> TunnelProcess:
        """Start one tunnel subprocess.

        Hidden tunnels redirect only their diagnostic stream, into a log
        file, and run without a console window (Windows) or in their own
        session (POSIX) so they outlive the launching shell. Visible tunnels
        get a console and no redirection.

        Raises:
            LaunchError: If the executable is missing or the OS refuses it
        """
        command = self.build_command(target, local_port, remote_port)
        log_file = None if show_window else self.new_log_file()

        logger.info(
            "Starting tunnel process",
            target=str(target),
            local_port=local_port,
            remote_port=remote_port,
            show_window=show_window,
        )
        logger.debug("Tunnel command", command=shlex.join(command))

        popen_kwargs: dict = {}
        if IS_WINDOWS:
            popen_kwargs["creationflags"] = (
                subprocess.CREATE_NEW_CONSOLE
                if show_window
                else subprocess.CREATE_NO_WINDOW
            )
        elif not show_window:
            popen_kwargs["start_new_session"] = True

        try:
            args = popen_args(command)
            if log_file is not None:
                with open(log_file, "wb") as stderr:
                    popen = subprocess.Popen(args, stderr=stderr, **popen_kwargs)
            else:
                popen = subprocess.Popen(
                    args,
                    stderr=None if show_window else subprocess.DEVNULL,
                    **popen_kwargs,
                )
        except OSError as e:
            if log_file is not None:
                log_file.unlink(missing_ok=True)
            logger.error("Failed to start tunnel process", error=str(e))
            raise LaunchError(f"Failed to start tunnel process: {e}") from e

        logger.info("Tunnel process started", pid=popen.pid, local_port=local_port)
        return TunnelProcess(popen=popen, log_file=log_file)


def popen_args(command: list[str]) -> list[str] | str:
    """Return what to pass to ``Popen`` for ``command``.

    Batch files run through ``cmd.exe /d /s /c``, which parses its own
    command line: the script and its arguments are quoted as one block,
    so paths with spaces and parentheses reach cmd intact. Everything
    else stays an argument vector.
    """
    if command[1:4] != CMD_SWITCHES:
        return command
    head = subprocess.list2cmdline(command[:4])
    return f'{head} "{subprocess.list2cmdline(command[4:])}"'


def _read_shebang(path: Path) -> list[str]:
    try:
        with open(path, "rb") as f:
            first_line = f.readline(256)
    except OSError:
        return []
    if not first_line.startswith(b"#!"):
        return []
    return shlex.split(first_line[2:].decode("utf-8", errors="replace").strip())
