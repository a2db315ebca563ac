from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Dict, Optional


# Per-request fields stamped onto every record. "rate" is the limiter outcome
# for the current request: "-" before the check, then "allowed" or "denied".
_CONTEXT_FIELDS = ("request_id", "client_ip", "rate")
_context: Dict[str, ContextVar[str]] = {
    name: ContextVar(name, default="-") for name in _CONTEXT_FIELDS
}

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    " | request_id=%(request_id)s client_ip=%(client_ip)s rate=%(rate)s"
)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _context.items():
            setattr(record, name, var.get())
        return True


def set_log_context(
    *,
    request_id: Optional[str] = None,
    client_ip: Optional[str] = None,
    rate: Optional[str] = None,
) -> None:
    for name, value in (("request_id", request_id), ("client_ip", client_ip), ("rate", rate)):
        if value is not None:
            _context[name].set(value)


def log_context() -> Dict[str, str]:
    return {name: var.get() for name, var in _context.items()}


def setup_logging(level: str = "INFO") -> None:
    lvl = logging.getLevelName(level.upper())
    if not isinstance(lvl, int):
        lvl = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(lvl)
    # One handler only, so a reload or a second app in tests never doubles lines.
    root.handlers = [handler]

    # httpx logs full request URLs at INFO, and ours carry the API key.
    logging.getLogger("httpx").setLevel(max(lvl, logging.WARNING))
    logging.getLogger("uvicorn.access").setLevel(max(lvl, logging.INFO))


def get_logger(name: str = "gemini_proxy") -> logging.Logger:
    return logging.getLogger(name)
