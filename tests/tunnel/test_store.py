"""Tests for the persisted tunnel store."""

import json
from unittest.mock import patch

import pytest

from iap_tunnel.tunnel.models import TunnelRecord
from iap_tunnel.tunnel.process import TunnelProcess
from iap_tunnel.tunnel.store import TunnelStore


@pytest.fixture
def store(tunnel_dir):
    return TunnelStore(tunnel_dir)


@pytest.fixture
def record(sleeper, target):
    """Record bound to a live child process."""
    return TunnelRecord.from_process(
        TunnelProcess(popen=sleeper), target=target, local_port=2222, remote_port=22
    )


def record_data(pid, log_file=None):
    data = {
        "id": pid,
        "InstanceName": "vm1",
        "Project": "p1",
        "Zone": "z1",
        "LocalPort": 2222,
        "RemotePort": 22,
        "ProcessId": pid,
    }
    if log_file is not None:
        data["LogFile"] = str(log_file)
    return data


def write_record(store, name, data):
    store.directory.mkdir(parents=True, exist_ok=True)
    path = store.directory / name
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    return path


class TestSave:
    def test_save_writes_one_file_per_id(self, store, record):
        assert store.save(record) is True

        path = store.path_for(record.id)
        assert path.name == f"{record.id}.json"
        data = json.loads(path.read_text())
        assert data["id"] == record.id
        assert data["ProcessId"] == record.id
        assert data["InstanceName"] == "vm1"
        assert data["LocalPort"] == 2222
        assert data["RemotePort"] == 22
        assert "Created" in data

    def test_save_leaves_no_temp_files(self, store, record):
        store.save(record)
        store.save(record)

        assert [p.name for p in store.directory.iterdir()] == [f"{record.id}.json"]

    def test_save_failure_is_not_fatal(self, store, record):
        with patch(
            "iap_tunnel.tunnel.store.tempfile.mkstemp", side_effect=OSError("disk full")
        ):
            assert store.save(record) is False

        assert not store.path_for(record.id).exists()

    def test_failed_write_removes_temp_file(self, store, record):
        with patch("iap_tunnel.tunnel.store.os.replace", side_effect=OSError("busy")):
            assert store.save(record) is False

        assert list(store.directory.iterdir()) == []


class TestRemove:
    def test_remove_deletes_file(self, store, record):
        store.save(record)

        assert store.remove(record.id) is True
        assert not store.path_for(record.id).exists()

    def test_remove_missing_file_is_not_an_error(self, store):
        assert store.remove(4242) is True

    def test_remove_failure_is_reported(self, store, record):
        store.save(record)
        with patch("pathlib.Path.unlink", side_effect=PermissionError("locked")):
            assert store.remove(record.id) is False


class TestLoadAll:
    def test_missing_directory_loads_nothing(self, store):
        assert store.load_all() == []

    def test_round_trip(self, store, record):
        store.save(record)

        loaded = store.load_all()

        assert len(loaded) == 1
        restored = loaded[0]
        assert restored.id == record.id
        assert restored.target == record.target
        assert restored.local_port == record.local_port
        assert restored.remote_port == record.remote_port
        assert restored.created_at == record.created_at
        assert restored.process is not None
        assert restored.process.is_running()

    def test_stale_record_is_deleted(self, store, dead_pid):
        store.log_dir.mkdir(parents=True)
        log_file = store.log_dir / "tunnel-abc.log"
        log_file.write_text("old output")
        path = write_record(
            store, f"{dead_pid}.json", record_data(dead_pid, log_file)
        )

        assert store.load_all() == []
        assert not path.exists()
        assert not log_file.exists()

    @pytest.mark.parametrize(
        "log_path",
        [
            lambda store: store.directory.parent / "victim.txt",
            lambda store: store.log_dir / ".." / ".." / "victim.txt",
        ],
        ids=["outside", "traversal"],
    )
    def test_stale_record_never_deletes_foreign_files(
        self, store, dead_pid, log_path
    ):
        victim = store.directory.parent / "victim.txt"
        victim.write_text("precious")
        path = write_record(
            store, f"{dead_pid}.json", record_data(dead_pid, log_path(store))
        )

        assert store.load_all() == []
        assert not path.exists()
        assert victim.read_text() == "precious"

    def test_live_record_drops_foreign_log_file(self, store, sleeper, tmp_path):
        victim = tmp_path / "victim.txt"
        victim.write_text("precious")
        write_record(store, f"{sleeper.pid}.json", record_data(sleeper.pid, victim))

        loaded = store.load_all()

        assert len(loaded) == 1
        assert loaded[0].log_file is None
        assert loaded[0].process.log_file is None

    def test_reused_pid_is_treated_as_stale(self, store, record):
        store.save(record)
        path = store.path_for(record.id)
        data = json.loads(path.read_text())
        data["ProcessCreateTime"] = data["ProcessCreateTime"] - 3600
        path.write_text(json.dumps(data))

        assert store.load_all() == []
        assert not path.exists()

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            "[1, 2, 3]",
            json.dumps({"id": 1, "Project": "p1"}),
            json.dumps(
                {
                    "InstanceName": "vm 1; rm -rf /",
                    "Project": "p1",
                    "Zone": "z1",
                    "LocalPort": 2222,
                    "ProcessId": 1,
                }
            ),
        ],
    )
    def test_corrupt_record_is_deleted(self, store, content):
        path = write_record(store, "1.json", content)

        assert store.load_all() == []
        assert not path.exists()

    def test_file_name_must_match_id(self, store, sleeper):
        path = write_record(
            store,
            "99999999.json",
            {
                "InstanceName": "vm1",
                "Project": "p1",
                "Zone": "z1",
                "LocalPort": 2222,
                "ProcessId": sleeper.pid,
            },
        )

        assert store.load_all() == []
        assert not path.exists()

    def test_tolerates_missing_and_unknown_fields(self, store, sleeper):
        write_record(
            store,
            f"{sleeper.pid}.json",
            {
                "InstanceName": "vm1",
                "Project": "p1",
                "Zone": "z1",
                "LocalPort": 2222,
                "ProcessId": sleeper.pid,
                "ShowWindow": False,
            },
        )

        loaded = store.load_all()

        assert len(loaded) == 1
        assert loaded[0].id == sleeper.pid
        assert loaded[0].remote_port == 22

    def test_other_files_are_ignored(self, store, record):
        store.save(record)
        store.log_dir.mkdir()
        (store.log_dir / "tunnel-abc.log").write_text("output")
        (store.directory / "notes.txt").write_text("keep me")

        assert len(store.load_all()) == 1
        assert (store.directory / "notes.txt").exists()

    def test_live_and_stale_records_together(
        self, store, record, dead_pid
    ):
        store.save(record)
        stale = write_record(
            store,
            f"{dead_pid}.json",
            {
                "InstanceName": "vm2",
                "Project": "p1",
                "Zone": "z1",
                "LocalPort": 2223,
                "ProcessId": dead_pid,
            },
        )

        loaded = store.load_all()

        assert [r.id for r in loaded] == [record.id]
        assert not stale.exists()
