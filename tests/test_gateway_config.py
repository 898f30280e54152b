"""Tests for gateway config: YAML loading, env interpolation, partial updates."""

import textwrap
from pathlib import Path

import pytest

from fileagent.gateway.config import (
    GatewayConfig,
    apply_config_update,
    load_gateway_config,
)
from fileagent.gateway.errors import ConfigurationError, GatewayConfigError


# =============================================================================
# HELPERS
# =============================================================================

def _write_config(tmp_path, content, filename="gateway.yaml"):
    """Write YAML config content to a temp file. Returns path."""
    p = tmp_path / filename
    p.write_text(textwrap.dedent(content))
    return str(p)


# =============================================================================
# DEFAULTS
# =============================================================================

class TestDefaults:

    def test_defaults(self):
        config = GatewayConfig()
        assert config.isolation is True
        assert config.api_key == ""
        assert config.allowed_path == ""
        assert config.port == 3000
        assert config.approve_requests is True
        assert config.approval_timeout is None
        assert config.notifications == ("host",)

    def test_host_follows_isolation(self):
        assert GatewayConfig().host == "127.0.0.1"
        assert GatewayConfig(isolation=False).host == "0.0.0.0"

    def test_to_dict_is_plain(self):
        data = GatewayConfig(notifications=("host", "desktop")).to_dict()
        assert data["notifications"] == ["host", "desktop"]
        assert data["port"] == 3000

    def test_config_error_is_configuration_error(self):
        assert issubclass(GatewayConfigError, ConfigurationError)


# =============================================================================
# PARTIAL UPDATES
# =============================================================================

class TestApplyConfigUpdate:

    def test_returns_new_instance(self):
        original = GatewayConfig()
        updated = apply_config_update(original, {"port": 4000})
        assert updated.port == 4000
        assert original.port == 3000

    def test_camel_case_aliases(self, tmp_path):
        updated = apply_config_update(GatewayConfig(), {
            "apiKey": "k",
            "allowedPath": str(tmp_path),
            "approveRequests": False,
        })
        assert updated.api_key == "k"
        assert updated.allowed_path == str(tmp_path.resolve())
        assert updated.approve_requests is False

    def test_unknown_field_rejected(self):
        with pytest.raises(GatewayConfigError, match="Unknown config field"):
            apply_config_update(GatewayConfig(), {"shell_access": True})

    def test_nothing_applied_on_failure(self):
        original = GatewayConfig()
        with pytest.raises(GatewayConfigError):
            apply_config_update(original, {"port": 4000, "isolation": "maybe"})
        assert original.port == 3000

    @pytest.mark.parametrize("port", [0, 70000, "abc"])
    def test_invalid_port(self, port):
        with pytest.raises(GatewayConfigError):
            apply_config_update(GatewayConfig(), {"port": port})

    def test_string_booleans(self):
        updated = apply_config_update(GatewayConfig(), {"isolation": "false"})
        assert updated.isolation is False

    def test_allowed_path_expands_user(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        updated = apply_config_update(GatewayConfig(), {"allowed_path": "~/docs"})
        assert updated.allowed_path == str((tmp_path / "docs").resolve())

    def test_empty_allowed_path_clears_root(self):
        updated = apply_config_update(
            GatewayConfig(allowed_path="/srv"), {"allowed_path": ""},
        )
        assert updated.allowed_path == ""

    def test_timeout(self):
        assert apply_config_update(
            GatewayConfig(), {"approval_timeout": 30},
        ).approval_timeout == 30.0
        assert apply_config_update(
            GatewayConfig(approval_timeout=5), {"approval_timeout": None},
        ).approval_timeout is None

    def test_negative_timeout_rejected(self):
        with pytest.raises(GatewayConfigError, match="positive"):
            apply_config_update(GatewayConfig(), {"approval_timeout": -1})

    def test_invalid_notification_channel(self):
        with pytest.raises(GatewayConfigError, match="invalid channel 'sms'"):
            apply_config_update(GatewayConfig(), {"notifications": ["sms"]})

    def test_webhook_requires_url(self):
        with pytest.raises(GatewayConfigError, match="approval_webhook_url"):
            apply_config_update(GatewayConfig(), {"notifications": ["webhook"]})

    def test_webhook_url_must_be_http(self):
        with pytest.raises(GatewayConfigError, match="http"):
            apply_config_update(
                GatewayConfig(), {"approval_webhook_url": "file:///etc/passwd"},
            )

    def test_webhook_with_url(self):
        updated = apply_config_update(GatewayConfig(), {
            "notifications": ["host", "webhook"],
            "approval_webhook_url": "https://ntfy.example.com/fileagent",
        })
        assert updated.notifications == ("host", "webhook")


# =============================================================================
# YAML LOADING
# =============================================================================

class TestLoadGatewayConfig:

    def test_full_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FA_TEST_KEY", "s3cret")
        (tmp_path / "shared").mkdir()
        path = _write_config(tmp_path, """\
            gateway:
              port: 3100
              isolation: false
              api_key: "${FA_TEST_KEY}"
              allowed_path: shared
              approve_requests: true
              approval_timeout: 120
              notifications: [host, desktop]
        """)
        config = load_gateway_config(path)
        assert config.port == 3100
        assert config.isolation is False
        assert config.api_key == "s3cret"
        assert config.allowed_path == str((tmp_path / "shared").resolve())
        assert config.approval_timeout == 120.0
        assert config.notifications == ("host", "desktop")

    def test_missing_file(self, tmp_path):
        with pytest.raises(GatewayConfigError, match="not found"):
            load_gateway_config(str(tmp_path / "nope.yaml"))

    def test_empty_file_gives_defaults(self, tmp_path):
        path = _write_config(tmp_path, "")
        assert load_gateway_config(path) == GatewayConfig()

    def test_invalid_yaml(self, tmp_path):
        path = _write_config(tmp_path, "gateway: [unclosed\n")
        with pytest.raises(GatewayConfigError, match="Invalid YAML"):
            load_gateway_config(path)

    def test_duplicate_key(self, tmp_path):
        path = _write_config(tmp_path, """\
            gateway:
              port: 3000
              port: 4000
        """)
        with pytest.raises(GatewayConfigError, match="Duplicate YAML key"):
            load_gateway_config(path)

    def test_non_mapping(self, tmp_path):
        path = _write_config(tmp_path, "- a\n- b\n")
        with pytest.raises(GatewayConfigError, match="mapping"):
            load_gateway_config(path)

    def test_unset_env_var(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FA_UNSET_KEY", raising=False)
        path = _write_config(tmp_path, """\
            gateway:
              api_key: "${FA_UNSET_KEY}"
        """)
        with pytest.raises(GatewayConfigError, match="FA_UNSET_KEY"):
            load_gateway_config(path)

    def test_allowed_path_must_be_directory(self, tmp_path):
        (tmp_path / "file.txt").write_text("x")
        path = _write_config(tmp_path, """\
            gateway:
              allowed_path: file.txt
        """)
        with pytest.raises(GatewayConfigError, match="not a directory"):
            load_gateway_config(path)

    def test_absolute_allowed_path(self, tmp_path):
        target = tmp_path / "abs"
        target.mkdir()
        path = _write_config(tmp_path, f"""\
            gateway:
              allowed_path: {target}
        """)
        assert Path(load_gateway_config(path).allowed_path) == target.resolve()

    def test_missing_root_warns(self, tmp_path, caplog):
        path = _write_config(tmp_path, "gateway:\n  port: 3000\n")
        with caplog.at_level("WARNING", logger="fileagent.gateway.config"):
            load_gateway_config(path)
        assert "No allowed_path configured" in caplog.text
