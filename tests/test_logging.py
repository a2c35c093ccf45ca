"""Tests für das structlog-Setup."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from cronpatch.config import CronPatchConfig, configure_logging
from cronpatch.utils.logging import LOG_FILE_NAME, bind_context, clear_context, get_logger, setup_logging


@pytest.fixture
def reset_logging() -> Iterator[None]:
    yield
    clear_context()
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)


@pytest.mark.usefixtures("reset_logging")
class TestSetupLogging:
    def test_json_file_log(self, tmp_path: Path) -> None:
        setup_logging(level="debug", log_dir=tmp_path, json_logs=True, console=False)
        bind_context(resource="ns/foo")
        get_logger("cronpatch.test").info("job_added", patch="p1")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = (tmp_path / LOG_FILE_NAME).read_text(encoding="utf-8").splitlines()
        entry = json.loads(lines[-1])
        assert entry["event"] == "job_added"
        assert entry["patch"] == "p1"
        assert entry["resource"] == "ns/foo"
        assert entry["level"] == "info"

    def test_apscheduler_is_quieted(self) -> None:
        setup_logging(console=True)
        assert logging.getLogger("apscheduler").level == logging.WARNING

    def test_console_renderer(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(level="INFO", console=True)
        get_logger("cronpatch.test").info("console_event")
        assert "console_event" in capsys.readouterr().err

    def test_configure_from_config(self, tmp_path: Path) -> None:
        config = CronPatchConfig(
            logging={"level": "warning", "json_logs": True, "console": False, "log_dir": tmp_path},
        )
        configure_logging(config)

        assert logging.getLogger().level == logging.WARNING
        get_logger("cronpatch.test").info("below_level")
        get_logger("cronpatch.test").warning("at_level")
        for handler in logging.getLogger().handlers:
            handler.flush()

        text = (tmp_path / LOG_FILE_NAME).read_text(encoding="utf-8")
        assert "at_level" in text
        assert "below_level" not in text
