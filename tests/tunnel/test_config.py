"""Tests for TunnelManagerConfig."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from iap_tunnel.tunnel import TunnelManagerConfig
from iap_tunnel.tunnel.config import DEFAULT_TUNNEL_DIR


class TestTunnelManagerConfig:
    def test_defaults(self):
        config = TunnelManagerConfig()

        assert config.tunnel_dir == DEFAULT_TUNNEL_DIR
        assert config.gcloud_path == "gcloud"
        assert config.default_timeout == 30.0
        assert config.poll_interval == 0.5
        assert config.default_remote_port == 22

    def test_tunnel_dir_is_expanded(self):
        config = TunnelManagerConfig(tunnel_dir="~/tunnels")
        assert config.tunnel_dir == Path.home() / "tunnels"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("default_timeout", 0),
            ("poll_interval", -1),
            ("connect_timeout", 0),
            ("default_remote_port", 70000),
            ("gcloud_path", "  "),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            TunnelManagerConfig(**{field: value})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            TunnelManagerConfig(gcloud="gcloud")

    def test_assignment_is_validated(self):
        config = TunnelManagerConfig()
        with pytest.raises(ValidationError):
            config.stop_timeout = -5


class TestFromEnv:
    def test_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IAP_TUNNEL_DIR", str(tmp_path))
        monkeypatch.setenv("IAP_TUNNEL_GCLOUD", "/opt/sdk/bin/gcloud")

        config = TunnelManagerConfig.from_env()

        assert config.tunnel_dir == tmp_path
        assert config.gcloud_path == "/opt/sdk/bin/gcloud"

    def test_overrides_win(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IAP_TUNNEL_GCLOUD", "/opt/sdk/bin/gcloud")

        config = TunnelManagerConfig.from_env(gcloud_path="gcloud.cmd")

        assert config.gcloud_path == "gcloud.cmd"

    def test_empty_environment_uses_defaults(self, monkeypatch):
        monkeypatch.delenv("IAP_TUNNEL_DIR", raising=False)
        monkeypatch.delenv("IAP_TUNNEL_GCLOUD", raising=False)

        assert TunnelManagerConfig.from_env() == TunnelManagerConfig()
