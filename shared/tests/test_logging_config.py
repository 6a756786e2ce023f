"""Tests for shared logging configuration."""

import json
import logging
import re

import pytest
import structlog

from shared.logging import (
    clear_context,
    get_correlation_id,
    get_logger,
    new_correlation_id,
    set_correlation_id,
    setup_logging,
)

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


def events(output):
    entries = [json.loads(line) for line in output.strip().split("\n") if line.strip()]
    return {entry["event"]: entry for entry in entries}


@pytest.fixture(autouse=True)
def reset_logging():
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestRenderers:
    def test_json_carries_provisioning_context(self, capsys):
        setup_logging(service_name="baremetal-provisioner", log_format="json", log_level="INFO")
        structlog.contextvars.bind_contextvars(cluster="c1", machine="m1", step="imaging")

        get_logger("provisioner.pipeline").info("image_installed", drive="sda")

        entry = events(capsys.readouterr().out)["image_installed"]
        assert entry["service"] == "baremetal-provisioner"
        assert entry["cluster"] == "c1"
        assert entry["machine"] == "m1"
        assert entry["step"] == "imaging"
        assert entry["drive"] == "sda"
        assert entry["level"] == "info"
        assert entry["logger"] == "provisioner.pipeline"
        assert "timestamp" in entry

    def test_console_for_operators(self, capsys):
        setup_logging(service_name="baremetal-provisioner", log_format="console")

        get_logger().info("server_claimed", server_ip="10.0.0.1")

        output = ANSI_ESCAPE.sub("", capsys.readouterr().out)
        assert "server_claimed" in output
        assert "server_ip=10.0.0.1" in output

    def test_failed_step_renders_exception(self, capsys):
        setup_logging(log_format="json")

        try:
            raise RuntimeError("installimage exited with 1")
        except RuntimeError:
            get_logger().error("step_failed", exc_info=True)

        entry = events(capsys.readouterr().out)["step_failed"]
        assert "installimage exited with 1" in entry["exception"]


class TestEnvironment:
    def test_settings_from_env(self, monkeypatch, capsys):
        monkeypatch.setenv("SERVICE_NAME", "provisioner-ci")
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        setup_logging()
        get_logger().debug("ssh_command_completed", exit_status=0)

        entry = events(capsys.readouterr().out)["ssh_command_completed"]
        assert entry["service"] == "provisioner-ci"
        assert entry["level"] == "debug"

    def test_default_service_name(self, monkeypatch, capsys):
        monkeypatch.delenv("SERVICE_NAME", raising=False)

        setup_logging(log_format="json")

        entry = events(capsys.readouterr().out)["logging_initialized"]
        assert entry["service"] == "baremetal-provisioner"

    def test_level_filtering(self, capsys):
        setup_logging(log_format="console", log_level="WARNING")
        logger = get_logger()

        logger.info("step_start")
        logger.warning("step_interrupted")

        output = ANSI_ESCAPE.sub("", capsys.readouterr().out)
        assert "step_start" not in output
        assert "step_interrupted" in output


class TestAsyncsshLogger:
    def test_at_least_warning(self):
        setup_logging(log_level="DEBUG")
        assert logging.getLogger("asyncssh").level == logging.WARNING

    def test_follows_higher_level(self):
        setup_logging(log_level="ERROR")
        assert logging.getLogger("asyncssh").level == logging.ERROR


class TestCorrelation:
    def test_set_and_get(self):
        set_correlation_id("corr_789")
        assert get_correlation_id() == "corr_789"

    def test_new_correlation_id_is_bound(self, capsys):
        setup_logging(log_format="json")

        correlation_id = new_correlation_id()
        get_logger().info("reconcile_started")

        entry = events(capsys.readouterr().out)["reconcile_started"]
        assert entry["correlation_id"] == correlation_id
        assert len(correlation_id) == 16  # noqa: PLR2004
        assert new_correlation_id() != correlation_id

    def test_clear_context(self):
        set_correlation_id("corr_789")
        clear_context()
        assert get_correlation_id() is None
