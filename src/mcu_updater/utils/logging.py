"""Logging setup and transport traffic log sinks."""

import logging
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from mcu_updater.models.commands import DeviceCommand, DeviceResponse

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def setup_logger(
    name: str = "mcu_updater",
    log_file: str = "./logs/mcu_updater.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: int = logging.INFO,
) -> logging.Logger:
    """Configure the package logger with a rotating file and the console.

    Args:
        name: Logger name; child loggers (name.orchestrator, ...) inherit it
        log_file: Path to log file (parent directory is created)
        max_bytes: Size at which the file rotates
        backup_count: Rotated files to keep
        level: Logging level

    Returns:
        Configured logger instance
    """
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Already configured (e.g. app reloaded)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers = [
        RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


class TrafficDirection(str, Enum):
    OUTGOING = "out"
    INCOMING = "in"


class TrafficLogSink:
    """Receives every command sent to and reply received from the device.

    Optional collaborator of the upgrade manager; the default does nothing.
    """

    def log_traffic(
        self,
        direction: TrafficDirection,
        command: DeviceCommand,
        response: Optional[DeviceResponse] = None,
    ) -> None:
        pass


class LoggerTrafficSink(TrafficLogSink):
    """Writes transport traffic to a standard logger with structured extras."""

    def __init__(self, logger_name: str = "mcu_updater.traffic", level: int = logging.DEBUG):
        self.logger = logging.getLogger(logger_name)
        self.level = level

    def log_traffic(
        self,
        direction: TrafficDirection,
        command: DeviceCommand,
        response: Optional[DeviceResponse] = None,
    ) -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        extra = {
            "direction": direction.value,
            "op": command.op.value,
            "image": command.image,
            "offset": command.offset,
            "size": len(command.data) if command.data is not None else 0,
        }
        if response is None:
            message = f"-> {command.op.value} image={command.image}"
            if command.offset is not None:
                message += f" off={command.offset} len={extra['size']}"
        else:
            extra["rc"] = response.rc
            message = f"<- {command.op.value} rc={response.rc}"
            if response.offset is not None:
                message += f" off={response.offset}"
        self.logger.log(self.level, message, extra=extra)
