"""Shared pytest fixtures for IAP tunnel tests."""

import socket
import subprocess
import sys
from unittest.mock import Mock

import pytest

from iap_tunnel.tunnel import (
    TunnelManager,
    TunnelManagerConfig,
    TunnelProcess,
    TunnelTarget,
)

# Stands in for `gcloud compute start-iap-tunnel`. FAKE_GCLOUD_MODE selects
# the behaviour: "listen" (default) binds the requested local port, "fail"
# exits with an error, "hang" never binds.
FAKE_GCLOUD = '''\
import os
import socket
import sys
import time

mode = os.environ.get("FAKE_GCLOUD_MODE", "listen")
port = None
for arg in sys.argv[1:]:
    if arg.startswith("--local-host-port="):
        port = int(arg.rsplit(":", 1)[1])

sys.stderr.write("Testing if tunnel connection works.\\n")
sys.stderr.flush()

if mode == "fail":
    sys.stderr.write("ERROR: (gcloud.compute.start-iap-tunnel) instance not found\\n")
    sys.stderr.flush()
    sys.exit(1)

if mode == "hang":
    while True:
        time.sleep(1)

server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
server.bind(("127.0.0.1", port))
server.listen(16)
sys.stderr.write("Listening on port [%d].\\n" % port)
sys.stderr.flush()
while True:
    conn, _ = server.accept()
    conn.close()
'''


@pytest.fixture
def fake_gcloud(tmp_path):
    """Write the fake gcloud script.

    Returns:
        Path: Path to the script
    """
    script = tmp_path / "bin" / "gcloud.py"
    script.parent.mkdir()
    script.write_text(FAKE_GCLOUD)
    return script


@pytest.fixture
def tunnel_dir(tmp_path):
    return tmp_path / "tunnels"


@pytest.fixture
def tunnel_config(tunnel_dir, fake_gcloud):
    """Manager configuration with short timeouts and the fake gcloud."""
    return TunnelManagerConfig(
        tunnel_dir=tunnel_dir,
        gcloud_path=str(fake_gcloud),
        default_timeout=10.0,
        poll_interval=0.05,
        connect_timeout=0.5,
        stop_timeout=2.0,
    )


@pytest.fixture
def manager(tunnel_config):
    """TunnelManager whose tunnels are removed after the test."""
    tunnel_manager = TunnelManager(tunnel_config)
    yield tunnel_manager
    tunnel_manager.remove_all_tunnels()


@pytest.fixture
def target():
    return TunnelTarget(project="p1", zone="z1", instance_name="vm1")


@pytest.fixture
def listening_port():
    """A local port with a listening socket behind it."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _spawn_sleeper() -> subprocess.Popen:
    return subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])


@pytest.fixture
def sleeper():
    """A real, long-running child process."""
    process = _spawn_sleeper()
    yield process
    if process.poll() is None:
        process.kill()
        process.wait()


@pytest.fixture
def spawn_sleeper():
    """Factory for several real, long-running child processes."""
    processes: list[subprocess.Popen] = []

    def spawn() -> subprocess.Popen:
        process = _spawn_sleeper()
        processes.append(process)
        return process

    yield spawn
    for process in processes:
        if process.poll() is None:
            process.kill()
            process.wait()


@pytest.fixture
def dead_pid():
    """Pid of a process that has already exited and been reaped."""
    process = subprocess.Popen([sys.executable, "-c", "pass"])
    process.wait()
    return process.pid


@pytest.fixture
def mock_process():
    """Mock tunnel process that reports itself running."""
    process = Mock(spec=TunnelProcess)
    process.pid = 12345
    process.log_file = None
    process.returncode = None
    process.create_time = None
    process.is_running.return_value = True
    process.stop.return_value = True
    process.read_diagnostics.return_value = ""
    return process
