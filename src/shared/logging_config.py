"""Structured logging for the Migrant Help chat service"""

import logging
import re
import sys

import structlog

# Event keys whose values never reach the log stream
SECRET_KEYS = frozenset({
    "api_key", "app_key", "x-app-key", "authorization", "apikey",
    "google_api_key", "supabase_key", "serpapi_api_key", "openrouteservice_api_key",
})

# Client libraries that log full request URLs (some carry api_key query params)
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3")

# Credential query params embedded in URLs or exception text
SECRET_QUERY_PARAM = re.compile(r"\b(api_key|apikey|key)=[^&\s'\"]+", re.IGNORECASE)


def scrub_secrets(text: str) -> str:
    return SECRET_QUERY_PARAM.sub(r"\1=***", text)


def _redact_secrets(logger, method_name, event_dict):
    for key, value in list(event_dict.items()):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = "***"
        elif isinstance(value, str):
            event_dict[key] = scrub_secrets(value)
    return event_dict


def configure_logging(service_name: str, level: str = "INFO", log_format: str = "json"):
    """Configure structlog and the stdlib root logger once per process.

    Args:
        service_name: Bound into every event as ``service``
        level: ChatConfig.log_level
        log_format: "json" for production, "console" for local runs
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer() if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.contextvars.bind_contextvars(service=service_name)
    return structlog.get_logger()
