"""Logging setup and request-scoped logger adapters for the URL shortener."""

import logging

__all__ = ["LOG_FORMAT", "LOGGER_NAME", "RequestIdFilter", "RequestLoggerAdapter", "setup_logging"]

LOGGER_NAME = "urlshortener"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


class RequestIdFilter(logging.Filter):
    """Gives records logged outside a request a placeholder request_id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return True


class RequestLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its context into each call's ``extra``.

    The stock adapter replaces a caller's ``extra`` with its own; here the
    call's fields are kept and the request context is added on top.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**(kwargs.get("extra") or {}), **self.extra}
        return msg, kwargs


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the service logger once and return it.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RequestIdFilter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger
