"""structlog configuration shared by the API process and tests."""

import logging
import sys

import structlog

from chat_gateway.core.config import Settings

_configured = False


def setup_logging(settings: Settings) -> None:
    global _configured
    if _configured:
        return

    level = getattr(logging, settings.LOG_LEVEL)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # Quiet third-party clients
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True
