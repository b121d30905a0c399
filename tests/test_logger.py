"""Tests for logger module."""

import logging
from datetime import date

from feedpipe.src.logger import LoggerConfig, configure_logger, daily_log_path


class TestLoggerConfig:
    def test_reads_level_and_file_switch_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("FEEDPIPE_FILE_LOGGING", "0")

        config = LoggerConfig.from_env()

        assert config.level == logging.DEBUG
        assert config.file_logging_enabled is False

    def test_unknown_level_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")

        assert LoggerConfig.from_env().level == logging.INFO

    def test_no_file_output_inside_aws(self, monkeypatch):
        monkeypatch.setenv("FEEDPIPE_FILE_LOGGING", "1")
        monkeypatch.setenv("AWS_LAMBDA_FUNCTION_NAME", "feedpipe-warm")

        assert LoggerConfig.from_env().file_logging_enabled is False


class TestConfigureLogger:
    def test_console_only_when_file_logging_is_off(self):
        logger_obj = configure_logger(
            LoggerConfig(name="feedpipe.test.console", file_logging_enabled=False)
        )

        assert [type(h) for h in logger_obj.handlers] == [logging.StreamHandler]
        assert logger_obj.propagate is False

    def test_writes_to_a_dated_file(self, tmp_path):
        config = LoggerConfig(name="feedpipe.test.file", logs_dir=tmp_path / "logs")
        logger_obj = configure_logger(config)

        logger_obj.warning("source refreshed")
        for handler in logger_obj.handlers:
            handler.flush()

        log_file = daily_log_path(tmp_path / "logs")
        assert "WARNING - feedpipe.test.file - source refreshed" in log_file.read_text()
        configure_logger(LoggerConfig(name="feedpipe.test.file", file_logging_enabled=False))

    def test_reconfiguring_does_not_stack_handlers(self):
        config = LoggerConfig(name="feedpipe.test.twice", file_logging_enabled=False)

        configure_logger(config)
        logger_obj = configure_logger(config)

        assert len(logger_obj.handlers) == 1


def test_daily_log_path_uses_iso_date(tmp_path):
    assert daily_log_path(tmp_path, date(2024, 3, 9)) == tmp_path / "logs_2024-03-09.txt"
