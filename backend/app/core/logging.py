"""
structlog setup: JSON lines in production, colored console in development.

Events are snake_case names with keyword context. Request ids and the
gateway event id arrive through contextvars. Card, bank and credential
fields are masked before rendering.
"""

import logging
import re
import sys
import structlog
from app.core.config import get_settings

MASK = "***"
SENSITIVE_KEYS = frozenset(
    {"password", "client_secret", "account_number", "authorization", "token", "api_key"}
)
_URL_CREDENTIALS = re.compile(r"(://[^:/@\s]*:)[^@\s]+@")

_configured = False


def scrub_secrets(logger, method_name, event_dict):
    for key, value in event_dict.items():
        if key in SENSITIVE_KEYS:
            event_dict[key] = MASK
        elif isinstance(value, str) and "://" in value:
            event_dict[key] = _URL_CREDENTIALS.sub(rf"\g<1>{MASK}@", value)
    return event_dict


def _add_service_name(logger, method_name, event_dict):
    event_dict.setdefault("service", get_settings().APP_NAME)
    return event_dict


def setup_logging() -> None:
    global _configured
    if _configured:
        return
    settings = get_settings()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        scrub_secrets,
    ]

    if settings.ENVIRONMENT == "production":
        processors += [_add_service_name, structlog.processors.format_exc_info]
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer]
        )
    )
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "stripe"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
