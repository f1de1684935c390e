from __future__ import annotations
import logging, sys
import structlog
import structlog.stdlib

from fitbet.config import settings


def configure_logging(level: str | None = None):
    """
    JSON logs on stdout for both structlog and stdlib loggers (uvicorn, sqlalchemy).
    `request_id` and `tick_at` contextvars are merged into every event.
    """
    lvl = logging.getLevelName(level or settings.log_level)
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    structlog.configure(
        processors=[
            *shared,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        cache_logger_on_first_use=True,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared,
    ))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    # one line per Bot API call otherwise
    logging.getLogger("httpx").setLevel(logging.WARNING)
