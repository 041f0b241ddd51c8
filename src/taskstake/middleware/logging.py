"""structlog setup shared by the API process and the settlement worker."""

import logging

import structlog

from taskstake.config import Settings

# Chatty third-party loggers and the level they run at outside debug mode.
QUIET_LOGGERS: dict[str, int] = {
    "sqlalchemy.engine": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "arq.jobs": logging.INFO,
}


def _service_context(settings: Settings) -> structlog.types.Processor:
    """Stamp every event with the deployment it came from."""
    context = {"service": "taskstake", "environment": settings.environment, "version": settings.app_version}

    def add_service_context(
        _logger: object, _method: str, event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def setup_logging(settings: Settings) -> None:
    """Configure structlog to render JSON in deployments and console lines locally."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    renderer: structlog.types.Processor
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _service_context(settings),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level)
    if not settings.debug:
        for name, quiet_level in QUIET_LOGGERS.items():
            logging.getLogger(name).setLevel(max(quiet_level, level))
