"""Unit tests for utils/logging.py."""

import logging
import pytest
from logging.handlers import RotatingFileHandler

from mcu_updater.models.commands import DeviceCommand, DeviceOperation, DeviceResponse
from mcu_updater.utils.logging import (
    LoggerTrafficSink,
    TrafficDirection,
    TrafficLogSink,
    setup_logger,
)


@pytest.mark.unit
class TestSetupLogger:
    """Test setup_logger function."""

    @pytest.fixture(autouse=True)
    def cleanup_loggers(self):
        """Remove handlers of loggers created by a test."""
        created = []
        yield created
        for name in created:
            lg = logging.getLogger(name)
            for h in list(lg.handlers):
                h.close()
                lg.removeHandler(h)

    def _unique_name(self, suffix: str) -> str:
        return f"test_mcu_updater_logger_{suffix}"

    def test_creates_log_directory(self, tmp_path, cleanup_loggers):
        """Missing log directories are created."""
        log_dir = tmp_path / "new_logs" / "subdir"
        name = self._unique_name("dir")
        cleanup_loggers.append(name)

        setup_logger(name, str(log_dir / "test.log"))

        assert log_dir.exists()

    def test_level_info_by_default(self, tmp_path, cleanup_loggers):
        name = self._unique_name("level_default")
        cleanup_loggers.append(name)

        logger = setup_logger(name, str(tmp_path / "test.log"))

        assert logger.name == name
        assert logger.level == logging.INFO

    def test_level_custom(self, tmp_path, cleanup_loggers):
        name = self._unique_name("level_debug")
        cleanup_loggers.append(name)

        logger = setup_logger(name, str(tmp_path / "test.log"), level=logging.DEBUG)

        assert logger.level == logging.DEBUG

    def test_file_and_console_handlers(self, tmp_path, cleanup_loggers):
        """One rotating file handler and one console handler are attached."""
        name = self._unique_name("handlers")
        cleanup_loggers.append(name)

        logger = setup_logger(
            name, str(tmp_path / "test.log"), max_bytes=5 * 1024 * 1024, backup_count=5
        )

        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        stream_handlers = [
            h for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert len(stream_handlers) == 1
        assert file_handlers[0].maxBytes == 5 * 1024 * 1024
        assert file_handlers[0].backupCount == 5

    def test_no_duplicate_handlers_on_second_call(self, tmp_path, cleanup_loggers):
        name = self._unique_name("no_dup")
        cleanup_loggers.append(name)

        logger1 = setup_logger(name, str(tmp_path / "test.log"))
        handler_count = len(logger1.handlers)
        logger2 = setup_logger(name, str(tmp_path / "test.log"))

        assert logger1 is logger2
        assert len(logger2.handlers) == handler_count

    def test_child_logger_writes_to_file(self, tmp_path, cleanup_loggers):
        """Component loggers under the package name end up in the log file."""
        name = self._unique_name("write")
        cleanup_loggers.append(name)

        logger = setup_logger(name, str(tmp_path / "test.log"))
        logging.getLogger(f"{name}.orchestrator").info("State: idle -> validate")
        for h in logger.handlers:
            h.flush()

        content = (tmp_path / "test.log").read_text()
        assert "State: idle -> validate" in content
        assert f"[INFO] {name}.orchestrator:" in content


@pytest.mark.unit
class TestTrafficSinks:
    """Test transport traffic sinks."""

    def test_base_sink_is_noop(self):
        TrafficLogSink().log_traffic(
            TrafficDirection.OUTGOING, DeviceCommand(op=DeviceOperation.LIST)
        )

    def test_logger_sink_outgoing_chunk(self, caplog):
        sink = LoggerTrafficSink()
        command = DeviceCommand(op=DeviceOperation.UPLOAD, image=1, offset=512, data=b"\x00" * 128)

        with caplog.at_level(logging.DEBUG, logger="mcu_updater.traffic"):
            sink.log_traffic(TrafficDirection.OUTGOING, command)

        record = caplog.records[-1]
        assert record.getMessage() == "-> upload image=1 off=512 len=128"
        assert record.direction == "out"
        assert record.size == 128

    def test_logger_sink_incoming_reply(self, caplog):
        sink = LoggerTrafficSink()
        command = DeviceCommand(op=DeviceOperation.UPLOAD, offset=0, data=b"\x00" * 64)

        with caplog.at_level(logging.DEBUG, logger="mcu_updater.traffic"):
            sink.log_traffic(TrafficDirection.INCOMING, command, DeviceResponse(offset=64))

        record = caplog.records[-1]
        assert record.getMessage() == "<- upload rc=0 off=64"
        assert record.rc == 0

    def test_logger_sink_disabled_level(self, caplog):
        sink = LoggerTrafficSink()

        with caplog.at_level(logging.INFO, logger="mcu_updater.traffic"):
            sink.log_traffic(TrafficDirection.OUTGOING, DeviceCommand(op=DeviceOperation.RESET))

        assert not [r for r in caplog.records if r.name == "mcu_updater.traffic"]
