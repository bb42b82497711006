import pytest
import yaml

from beamdui.config import ApiConfig, ConfigError, ConfigManager


def test_missing_file_creates_default_config(tmp_path):
    config_file = tmp_path / "beamdui" / "config.yaml"

    manager = ConfigManager(config_file, environ={})

    assert config_file.exists()
    saved = yaml.safe_load(config_file.read_text())
    assert saved["api"]["profile"] == "direct"
    assert saved["polling"]["dashboard_interval"] == 30.0
    assert manager.get_config().notifications.duration == 3.0


def test_user_values_merge_over_defaults(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump({
        "api": {"base_url": "http://game.test:10100", "token": "abc"},
        "polling": {"players_interval": 5, "latest_wins": False},
        "logging": {"level": "debug"},
    }))

    config = ConfigManager(config_file, environ={}).get_config()

    assert config.api.base_url == "http://game.test:10100"
    assert config.api.token == "abc"
    assert config.api.profile == "direct"
    assert config.polling.players_interval == 5
    assert config.polling.dashboard_interval == 30.0
    assert config.polling.latest_wins is False


def test_logging_section_is_merged(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump({"logging": {"level": "debug", "file_path": "/tmp/x.log"}}))

    logging_config = ConfigManager(config_file, environ={}).get_config().logging

    assert logging_config.level == "debug"
    assert logging_config.file_path == "/tmp/x.log"
    assert logging_config.backup_count == 5


def test_environment_overrides_file(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump({"api": {"base_url": "http://file", "token": "file-token"}}))

    config = ConfigManager(config_file, environ={
        "BEAMDUI_API_TOKEN": "env-token",
        "BEAMDUI_PROFILE": "panel",
        "BEAMDUI_SERVER_ID": "abc123",
    }).get_config()

    assert config.api.base_url == "http://file"
    assert config.api.token == "env-token"
    assert config.api.profile == "panel"
    assert config.api.server_id == "abc123"


def test_invalid_yaml_falls_back_to_defaults(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("api: [unclosed")

    config = ConfigManager(config_file, environ={}).get_config()

    assert config.api.base_url == ""
    assert config.polling.players_interval == 10.0


def test_non_mapping_yaml_is_ignored(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("- just\n- a list\n")
    assert ConfigManager(config_file, environ={}).get_config().api.profile == "direct"


@pytest.mark.parametrize("api", [
    ApiConfig(base_url="", token="t"),
    ApiConfig(base_url="http://x", token=""),
    ApiConfig(base_url="http://x", token="t", profile="ssh"),
    ApiConfig(base_url="http://x", token="t", profile="panel"),
])
def test_api_config_validation_errors(api):
    with pytest.raises(ConfigError):
        api.validate()


def test_api_config_valid_profiles():
    ApiConfig(base_url="http://x", token="t").validate()
    ApiConfig(base_url="http://x", token="t", profile="panel", server_id="abc").validate()
