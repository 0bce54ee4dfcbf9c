# receipt_ocr/core/logging.py
import logging
import os
import structlog
import sys

from structlog.types import EventDict, Processor, WrappedLogger


SERVICE_NAME = "receipt-ocr"


def add_service_context(service: str) -> Processor:
    """
    Stamp every event with the service name and process id.

    OCR runs in worker processes, so the pid tells apart lines written by the
    API process from those written by a worker.
    """

    def processor(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        event_dict.setdefault("pid", os.getpid())
        return event_dict

    return processor


def setup_logging(
    log_level: str = "INFO", enable_json: bool = False, service: str = SERVICE_NAME
) -> None:
    """
    Setup structured logging for the receipt OCR service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json: Whether to output JSON formatted logs
        service: Name bound to every event as ``service``
    """

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_service_context(service),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if enable_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LoggerMixin:
    """Mixin to add a class-named logger to any class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger
