"""Tests for configuration, metrics collection and logging."""

import json
import logging
import tempfile
import pytest
from pathlib import Path
from unittest.mock import patch

from voice_agent.config.settings import Settings
from voice_agent.metrics.collector import MetricsCollector
from voice_agent.utils.logging import JsonFormatter, setup_logging


def clean_settings(env=None, **kwargs):
    """Build settings from the given environment only."""
    with patch.dict("os.environ", env or {}, clear=True):
        return Settings(load_env_file=False, **kwargs)


class TestSettings:
    """Test configuration management."""

    def test_default_settings(self):
        settings = clean_settings()

        assert settings.server.port == 3001
        assert settings.providers.completion_order == ["gemini", "openai"]
        assert settings.providers.openai_model == "gpt-4o-mini"
        assert settings.providers.openai_max_tokens == 150
        assert settings.client.rearm_delay_ms == 200
        assert settings.client.debug_log_size == 3
        assert settings.credentials.gemini_api_key is None
        assert settings.credentials.openai_api_key is None

    def test_environment_variable_override(self):
        settings = clean_settings({
            "PORT": "8080",
            "GEMINI_API_KEY": "g-key",
            "OPENAI_API_KEY": "sk-key",
            "COMPLETION_PROVIDERS": "openai, gemini",
            "PROVIDER_TIMEOUT": "12.5",
            "CORS_ORIGINS": "http://localhost:3000,http://example.com",
        })

        assert settings.server.port == 8080
        assert settings.credentials.gemini_api_key == "g-key"
        assert settings.credentials.openai_api_key == "sk-key"
        assert settings.providers.completion_order == ["openai", "gemini"]
        assert settings.timeouts.provider_timeout == 12.5
        assert settings.server.cors_origins == ["http://localhost:3000", "http://example.com"]

    def test_google_api_key_alias(self):
        settings = clean_settings({"GOOGLE_API_KEY": "google-key"})

        assert settings.credentials.gemini_api_key == "google-key"

    def test_empty_credential_is_missing(self):
        settings = clean_settings({"OPENAI_API_KEY": ""})

        assert settings.credentials.openai_api_key is None

    def test_config_file_loading(self):
        config_data = {
            "server": {"port": 4000},
            "providers": {"gemini_model": "gemini-pro", "unknown_key": 1},
            "client": {"rearm_delay_ms": 50},
        }

        with tempfile.TemporaryDirectory() as tmp_dir:
            config_file = Path(tmp_dir) / "config.json"
            config_file.write_text(json.dumps(config_data))

            settings = clean_settings(config_file=config_file)

        assert settings.server.port == 4000
        assert settings.providers.gemini_model == "gemini-pro"
        assert settings.client.rearm_delay_ms == 50
        assert not hasattr(settings.providers, "unknown_key")

    def test_environment_beats_config_file(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            config_file = Path(tmp_dir) / "config.json"
            config_file.write_text(json.dumps({"server": {"port": 4000}}))

            settings = clean_settings({"PORT": "5000"}, config_file=config_file)

        assert settings.server.port == 5000

    def test_invalid_config_file_is_ignored(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            config_file = Path(tmp_dir) / "config.json"
            config_file.write_text("{not json")

            settings = clean_settings(config_file=config_file)

        assert settings.server.port == 3001

    def test_provider_config(self):
        settings = clean_settings({"GEMINI_API_KEY": "g-key"})

        gemini_config = settings.get_provider_config("gemini")
        assert gemini_config["api_key"] == "g-key"
        assert gemini_config["timeout"] == 30.0

        openai_config = settings.get_provider_config("openai")
        assert openai_config["api_key"] is None
        assert openai_config["max_tokens"] == 150

        assert "compute_units" in settings.get_provider_config("whisperkit")
        assert "voice_id" in settings.get_provider_config("elevenlabs")

        with pytest.raises(ValueError):
            settings.get_provider_config("unknown_provider")

    def test_settings_validation(self):
        settings = clean_settings()

        assert settings.validate() == []

        settings.server.port = 0
        settings.timeouts.provider_timeout = -1
        settings.providers.completion_order = ["gemini", "claude"]

        issues = settings.validate()
        assert len(issues) == 3
        assert "Unknown completion provider: claude" in issues

    def test_to_dict_hides_credentials(self):
        settings = clean_settings({"OPENAI_API_KEY": "sk-secret"})

        data = settings.to_dict()

        assert data["credentials"] == {"gemini": False, "openai": True, "elevenlabs": False}
        assert "sk-secret" not in json.dumps(data)
        assert "sk-secret" not in repr(settings.credentials)


class TestMetricsCollector:
    """Test metrics collection."""

    def test_latency_stats(self):
        collector = MetricsCollector()
        for latency in (100.0, 110.0, 120.0, 130.0, 140.0):
            collector.record_provider_latency("gemini", latency)

        stats = collector.get_summary()["providers"]["gemini"]["latency_ms"]

        assert stats["samples"] == 5
        assert stats["min"] == 100.0
        assert stats["max"] == 140.0
        assert stats["avg"] == 120.0
        assert stats["p50"] == 120.0

    def test_error_recording(self):
        collector = MetricsCollector()

        collector.record_provider_error("openai", "HTTP 429", {"session_id": "s1"})
        summary = collector.get_summary()

        assert summary["total_provider_errors"] == 1
        assert summary["providers"]["openai"]["errors"] == 1
        assert summary["providers"]["openai"]["latency_ms"]["samples"] == 0
        assert summary["recent_errors"][0]["metadata"] == {"session_id": "s1"}

    def test_recent_errors_are_bounded(self):
        collector = MetricsCollector(max_errors=5)

        for i in range(20):
            collector.record_provider_error("gemini", f"error {i}")

        assert len(collector._recent_errors) == 5
        assert collector._recent_errors[-1]["error"] == "error 19"
        assert collector.get_summary()["total_provider_errors"] == 20

    def test_latency_samples_are_bounded(self):
        collector = MetricsCollector(max_latency_samples=5)

        for i in range(20):
            collector.record_provider_latency("gemini", float(i))

        stats = collector.get_summary()["providers"]["gemini"]["latency_ms"]

        assert stats["samples"] == 5
        # Only the newest samples count
        assert stats["min"] == 15.0
        assert stats["max"] == 19.0

    def test_counters(self):
        collector = MetricsCollector()

        collector.record_completion()
        collector.record_completion()
        collector.record_degraded_reply()
        summary = collector.get_summary()

        assert summary["total_completions"] == 2
        assert summary["degraded_replies"] == 1
        assert summary["uptime_seconds"] >= 0


class TestLogging:
    """Test logging configuration."""

    def test_json_formatter(self):
        formatter = JsonFormatter()
        record = logging.LogRecord(
            name="test_logger",
            level=logging.INFO,
            pathname="test.py",
            lineno=10,
            msg="Test message",
            args=(),
            exc_info=None,
        )

        log_data = json.loads(formatter.format(record))

        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "test_logger"
        assert log_data["message"] == "Test message"
        assert "timestamp" in log_data

    def test_setup_logging_with_file(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            setup_logging(debug=True, log_file=True, log_dir=tmp_dir)

            log_files = list(Path(tmp_dir).glob("voice_agent_*.log"))
            assert len(log_files) == 1
            assert logging.getLogger().level == logging.DEBUG

            for handler in logging.getLogger().handlers[:]:
                handler.close()
                logging.getLogger().removeHandler(handler)

    def test_setup_logging_level(self):
        setup_logging(log_level="warning")

        assert logging.getLogger().level == logging.WARNING
