# examcoach/logger.py
import logging

import structlog


def configure_logging(level: str = "INFO", env_mode: str = "LOCAL") -> None:
    log_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    if env_mode.upper() in ("LOCAL", "STAGING"):
        exception_processor = structlog.processors.format_exc_info
        renderer = [structlog.dev.ConsoleRenderer(colors=False)]
    else:
        exception_processor = structlog.processors.dict_tracebacks
        renderer = [structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            exception_processor,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.contextvars.merge_contextvars,
            *renderer,
        ],
        cache_logger_on_first_use=True,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )


logger: structlog.stdlib.BoundLogger = structlog.get_logger()
