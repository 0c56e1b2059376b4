from __future__ import annotations

import atexit
import copy
import logging
import logging.config
import queue
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Optional

import structlog

from vodhub.infrastructure.config.schema import AppConfig

log = structlog.get_logger(__name__)


BASE_LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": "%(levelprefix)s %(message)s",
            "use_colors": None,
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": '%(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s',
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
        "access": {
            "formatter": "access",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"level": "INFO"},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        # httpx logs every request at INFO; the invoker logs its own attempts.
        "httpx": {"level": "WARNING"},
    },
}

_QUEUE_LISTENER: Optional[QueueListener] = None


def _drop_color_message(_: Any, __: Any, event_dict: dict[str, Any]) -> dict[str, Any]:
    # Uvicorn attaches "color_message" which duplicates the event.
    event_dict.pop("color_message", None)
    return event_dict


def _add_record_created_timestamp_utc(
    _: Any, __: Any, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Stamp foreign (non-structlog) records with their creation time, not the
    time the background listener formats them.
    """
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        event_dict["timestamp"] = dt.isoformat().replace("+00:00", "Z")
    return event_dict


def _renderer(config: AppConfig) -> structlog.typing.Processor:
    if config.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def _processor_formatter(config: AppConfig) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            _drop_color_message,
            structlog.contextvars.merge_contextvars,
            _add_record_created_timestamp_utc,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(config),
        ],
    )


def build_logging_config(config: AppConfig) -> dict[str, Any]:
    """
    Build a uvicorn-compatible dictConfig rendered through structlog.

    ``config.log_level`` is applied to every preconfigured logger except
    ``httpx``, which stays at WARNING unless DEBUG is requested.
    """
    cfg = copy.deepcopy(BASE_LOGGING_CONFIG)

    cfg["formatters"]["structlog"] = {
        "()": structlog.stdlib.ProcessorFormatter,
        "foreign_pre_chain": [
            _drop_color_message,
            structlog.contextvars.merge_contextvars,
            _add_record_created_timestamp_utc,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
        ],
        "processors": [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(config),
        ],
    }
    cfg["handlers"]["default"]["formatter"] = "structlog"
    cfg["handlers"]["access"]["formatter"] = "structlog"

    level = config.log_level
    for name, logger_cfg in cfg["loggers"].items():
        if name == "httpx" and level != "DEBUG":
            continue
        logger_cfg["level"] = level

    cfg["root"] = {"handlers": ["default"], "level": level}
    return cfg


def _stop_async_listener() -> None:
    global _QUEUE_LISTENER
    if _QUEUE_LISTENER is not None:
        try:
            _QUEUE_LISTENER.stop()
        finally:
            _QUEUE_LISTENER = None


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int) -> None:
        super().__init__()
        self._max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self._max_level


class _MinLevelFilter(logging.Filter):
    def __init__(self, min_level: int) -> None:
        super().__init__()
        self._min_level = min_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self._min_level


class _StructlogPreservingQueueHandler(QueueHandler):
    """QueueHandler that keeps structlog's dict ``record.msg`` intact."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # QueueHandler.prepare() would call record.getMessage() and flatten the dict.
        return copy.copy(record)


def _enable_async_logging(config: AppConfig) -> None:
    """
    Route all stdlib logging through a QueueHandler and emit from a
    QueueListener thread, so the event loop never blocks on stream I/O.
    """
    global _QUEUE_LISTENER

    _stop_async_listener()

    formatter = _processor_formatter(config)

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setFormatter(formatter)
    stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.addFilter(_MinLevelFilter(logging.ERROR))

    q: queue.Queue[logging.LogRecord] = queue.Queue()
    queue_handler = _StructlogPreservingQueueHandler(q)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(queue_handler)
    root.setLevel(config.log_level)

    for name in list(logging.root.manager.loggerDict.keys()):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True
        if name.startswith("httpx") and config.log_level != "DEBUG":
            logger.setLevel(logging.WARNING)
        else:
            logger.setLevel(config.log_level)

    _QUEUE_LISTENER = QueueListener(
        q, stdout_handler, stderr_handler, respect_handler_level=True
    )
    _QUEUE_LISTENER.start()
    atexit.register(_stop_async_listener)


def configure_logging(config: AppConfig) -> dict[str, Any]:
    """
    Configure structlog + stdlib logging.

    Returns the uvicorn-compatible dictConfig (useful for inspection); the
    actual emission is wired through QueueHandler/QueueListener.
    """
    structlog.configure(
        processors=[
            _drop_color_message,
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    cfg = build_logging_config(config)
    logging.config.dictConfig(cfg)
    _enable_async_logging(config)

    log.info(
        "logging_configured", log_format=config.log_format, log_level=config.log_level
    )
    return cfg
