"""JSON logs on stdout, tagged with the trade-in, webhook event and trace in scope."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from tradein.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
trade_in_id_ctx: ContextVar[str] = ContextVar("trade_in_id", default="")

_CONTEXT_VARS = {"trace_id": trace_id_ctx, "event_id": event_id_ctx, "trade_in_id": trade_in_id_ctx}

# Client libraries that log every request at INFO.
NOISY_LOGGERS = ("aiokafka", "httpx", "httpcore")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for name, var in _CONTEXT_VARS.items():
            setattr(record, name, var.get())
        return True


@contextmanager
def log_context(**fields: str):
    """Tag every log line emitted inside the block, e.g. `log_context(trade_in_id=...)`."""

    tokens = [(_CONTEXT_VARS[name], _CONTEXT_VARS[name].set(value or "")) for name, value in fields.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(level: str | None = None) -> None:
    """Install the JSON handler on the root logger; safe to call more than once."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(event_id)s %(trade_in_id)s %(message)s",
            rename_fields={"asctime": "ts", "levelname": "level"},
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("tradein")
