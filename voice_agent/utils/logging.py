"""Logging configuration.

structlog renders every event, stdlib logging routes it. Records from
libraries that log through stdlib directly (uvicorn, httpx) go through the
same handlers and are formatted by ``JsonFormatter``.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
import structlog


LOG_FILE_PREFIX = "voice_agent"


class JsonFormatter(logging.Formatter):
    """One JSON object per stdlib log record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, ensure_ascii=False, separators=(",", ":"), default=str)


def _console_handler(level: int, dev_output: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if dev_output:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())
    return handler


def _file_handler(
    log_dir: Path, level: int, rotation_mb: int, backup_count: int
) -> logging.handlers.RotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{LOG_FILE_PREFIX}_{stamp}.log",
        maxBytes=rotation_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    return handler


def setup_logging(
    debug: bool = False,
    log_file: bool = False,
    log_level: str = "INFO",
    log_format: str = "json",
    log_dir: Optional[Union[str, Path]] = None,
    file_rotation_mb: int = 10,
    file_backup_count: int = 7,
) -> None:
    """
    Configure structured logging for the server and the CLI.

    Args:
        debug: Log at DEBUG regardless of ``log_level``
        log_file: Also write rotating JSON log files
        log_level: DEBUG, INFO, WARNING or ERROR
        log_format: ``json`` or ``dev``; a terminal defaults to ``dev``
        log_dir: Directory for log files, ``./logs`` by default
        file_rotation_mb: Size at which a log file rotates
        file_backup_count: Rotated files to keep
    """
    level_name = "DEBUG" if debug else log_level.upper()
    level = getattr(logging, level_name)
    dev_output = log_format == "dev" or (sys.stderr.isatty() and log_format != "json")

    structlog.configure(
        processors=[
            # Values bound with structlog.contextvars (e.g. session_id) join every event
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
            if dev_output
            else structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(_console_handler(level, dev_output))
    root_logger.setLevel(level)

    if log_file:
        file_handler = _file_handler(
            Path(log_dir or "./logs"), level, file_rotation_mb, file_backup_count
        )
        root_logger.addHandler(file_handler)
        structlog.get_logger().info(
            "Logging configured",
            log_file=file_handler.baseFilename,
            log_level=level_name,
            log_format=log_format,
        )
