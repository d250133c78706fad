import logging
import sys
from pythonjsonlogger import jsonlogger
from app.core.config import Settings
from app.core.middleware import request_id_var


class RequestIdFilter(logging.Filter):
    """Stamp request_id on every record; None outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def configure_logging(settings: Settings) -> None:
    """
    Structured (JSON) logging on the root logger.
    Workflow services log contract_id / from / to through `extra=`.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    fmt = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(request_id)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
        static_fields={"app": settings.app_name, "env": settings.environment},
    )
    handler.setFormatter(fmt)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    # engine echo is noisy; keep SQL at WARNING unless explicitly debugging
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
