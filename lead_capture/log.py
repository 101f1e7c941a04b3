"""JSON log output tagged with the id of the request being served."""

import json
import logging
import logging.config
from contextvars import ContextVar
from typing import Any, Dict

request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default="-")

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "request_id"}
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def get_request_id() -> str:
    return request_id_ctx_var.get()


class RequestIdFilter(logging.Filter):
    """Stamp records with the current request id (``-`` outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Anything passed through ``extra=`` lands as a top-level key, so call sites
    log context such as ``lead_id`` or ``status_code`` without string
    formatting. Values that are not JSON types are rendered with ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and key not in entry
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = record.stack_info
        return json.dumps({key: value for key, value in entry.items() if value is not None}, default=str)


def configure_logging(level: str) -> None:
    """Route the root and uvicorn loggers through one JSON stdout handler."""

    level = level.upper()
    logger_config = {"handlers": ["stdout"], "level": level, "propagate": False}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_id": {"()": RequestIdFilter}},
            "formatters": {"json": {"()": JsonFormatter, "datefmt": "%Y-%m-%dT%H:%M:%S%z"}},
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "filters": ["request_id"],
                    "stream": "ext://sys.stdout",
                }
            },
            "loggers": {"": logger_config, **{name: dict(logger_config) for name in _SERVER_LOGGERS}},
        }
    )
