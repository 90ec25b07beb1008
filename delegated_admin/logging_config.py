import logging

import structlog

from .config_manager import LoggingConfig, setup_logging


def configure_logging(config: LoggingConfig) -> None:
    """Configure stdlib handlers and route structlog through them.

    Service modules that log with bound context (tenant, relationship) use
    ``structlog.get_logger``; everything else uses ``logging.getLogger``.
    Both end up on the handlers installed by ``setup_logging``.
    """
    setup_logging(config)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.getLogger(__name__).debug(
        f"structlog configured ({'json' if config.json_output else 'console'} renderer)"
    )
