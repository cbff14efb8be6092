"""Root logger setup for the CRM sync workers."""

import logging

from scribe_crm.core.config import Settings, get_settings

# Per-request chatter from the HTTP stack and scheduler ticks
_NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler.scheduler", "apscheduler.executors")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _json_formatter() -> logging.Formatter:
    from pythonjsonlogger.json import JsonFormatter

    return JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={
            "asctime": "timestamp",
            "levelname": "level",
            "name": "logger",
        },
        static_fields={"app": "scribe-crm"},
    )


def configure_logging(settings: Settings | None = None) -> None:
    """Install a single stream handler on the root logger.

    ``LOG_FORMAT=json`` emits one JSON object per record, so ``extra=``
    fields such as ``user_id`` and ``provider`` become searchable keys.
    Anything else uses a plain text line. Calling this again replaces the
    previous handler.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if settings.LOG_FORMAT.lower() == "json":
        handler.setFormatter(_json_formatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
