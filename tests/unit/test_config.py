"""
Unit tests for TOML configuration and typed settings.

The autouse ``isolated_app_dir`` fixture points the config file at a
temporary directory.
"""

import logging

import pytest

from prs1core.config import (
    ConfigError,
    Settings,
    get_config_path,
    load_config,
    load_settings,
    save_config,
    set_config_value,
    unset_config_value,
)
from prs1core.logging_config import PACKAGE_LOGGER, _build_logging_config, setup_logging


class TestConfigFile:
    def test_missing_file_is_empty(self):
        assert load_config() == {}

    def test_save_and_load(self, isolated_app_dir):
        save_config({"breath": {"max_breath_sec": 10.0}})

        assert get_config_path() == isolated_app_dir / "config.toml"
        assert load_config() == {"breath": {"max_breath_sec": 10.0}}
        assert not get_config_path().with_suffix(".toml.tmp").exists()

    def test_corrupt_file_treated_as_empty(self, caplog):
        path = get_config_path()
        path.parent.mkdir(parents=True)
        path.write_text("this is = = not toml")

        with caplog.at_level(logging.WARNING, logger="prs1core.config"):
            assert load_config() == {}
        assert "Failed to load config" in caplog.text


class TestSettings:
    def test_defaults(self):
        settings = load_settings()

        assert settings.aggregation.timezone == "UTC"
        assert settings.aggregation.rolling_windows_minutes == [5, 10, 30]
        assert settings.breath.flow_gain == 1.0
        assert settings.waveform.max_gap_ms_snap == 1500
        assert settings.decoder.trust_frame_crc
        assert not settings.decoder.enforce_crc

    def test_unknown_sections_ignored(self):
        settings = load_settings({"logging": {"level": "INFO"}, "edf": {"flow_keywords": ["air"]}})

        assert settings.edf.flow_keywords == ["air"]

    @pytest.mark.parametrize(
        "config",
        [
            {"breath": {"min_breath_sec": 5.0, "max_breath_sec": 2.0}},
            {"breath": {"flow_gain": 0}},
            {"decoder": {"max_frames": -1}},
            {"episodes": {"leak_min_duration_sec": "soon"}},
            {"aggregation": {"timezone": "Mars/Olympus"}},
        ],
    )
    def test_invalid_values_raise(self, config):
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_settings(config)

    def test_default_model_matches_load(self):
        assert load_settings() == Settings()


class TestSetUnset:
    def test_set_parses_toml_scalars(self):
        set_config_value("breath.max_breath_sec", "10")
        set_config_value("aggregation.timezone", "Europe/Berlin")
        set_config_value("aggregation.rolling_windows_minutes", "[15, 60]")

        config = load_config()
        assert config["breath"]["max_breath_sec"] == 10
        assert config["aggregation"]["timezone"] == "Europe/Berlin"
        assert load_settings().aggregation.rolling_windows_minutes == [15, 60]

    def test_set_rejects_invalid_value(self):
        with pytest.raises(ConfigError):
            set_config_value("breath.flow_gain", "-1")

        assert load_config() == {}

    def test_set_rejects_malformed_key(self):
        with pytest.raises(ConfigError, match="section.name"):
            set_config_value("timezone", "UTC")

    def test_unknown_sections_stored_unvalidated(self):
        set_config_value("logging.level", "INFO")

        assert load_config() == {"logging": {"level": "INFO"}}

    def test_unset_removes_key_section_and_file(self):
        set_config_value("breath.max_breath_sec", "10")
        set_config_value("breath.min_breath_sec", "2")

        assert unset_config_value("breath.max_breath_sec")
        assert load_config() == {"breath": {"min_breath_sec": 2}}

        assert unset_config_value("breath.min_breath_sec")
        assert not get_config_path().exists()

    def test_unset_missing_key(self):
        assert not unset_config_value("breath.max_breath_sec")


class TestLoggingConfig:
    def test_file_handler_follows_logging_section(self, isolated_app_dir):
        save_config({"logging": {"level": "info", "max_size_mb": 2, "backup_count": 1}})

        config = _build_logging_config(verbose=True)

        file_handler = config["handlers"]["file"]
        assert file_handler["level"] == "INFO"
        assert file_handler["maxBytes"] == 2 * 1024 * 1024
        assert file_handler["backupCount"] == 1
        assert file_handler["filename"].startswith(str(isolated_app_dir))
        assert config["handlers"]["console"]["level"] == "DEBUG"

    def test_file_logging_can_be_disabled(self):
        save_config({"logging": {"enabled": False, "level": "nonsense"}})

        config = _build_logging_config()

        assert "file" not in config["handlers"]
        assert config["loggers"][PACKAGE_LOGGER]["handlers"] == ["console"]

    def test_setup_logging_writes_log_file(self, tmp_path):
        log_file = tmp_path / "run.log"

        setup_logging(log_file=log_file)
        logging.getLogger("prs1core.tests").info("hello from tests")
        for handler in logging.getLogger(PACKAGE_LOGGER).handlers:
            handler.flush()

        assert "hello from tests" in log_file.read_text()
