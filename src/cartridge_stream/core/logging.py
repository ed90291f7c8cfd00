"""Logging configuration for cartridge-stream."""

import logging
import sys
from typing import Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from .config import MonitoringConfig


def setup_logging(monitoring: Optional[MonitoringConfig] = None, cli_mode: bool = False) -> None:
    """Set up structured logging.

    Structured mode renders JSON lines on stdout; otherwise log lines go
    through a rich console handler on stderr.
    """
    monitoring = monitoring or MonitoringConfig()
    level = logging.WARNING if cli_mode else getattr(logging, monitoring.log_level)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
        if monitoring.structured_logging
        else structlog.dev.ConsoleRenderer(colors=not cli_mode),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if monitoring.structured_logging:
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=False,
            show_path=not cli_mode,
            markup=False,
            rich_tracebacks=True,
        )
    handler.setLevel(level)
    root_logger.addHandler(handler)

    # Registration logs are noise on the command line
    if cli_mode:
        logging.getLogger("cartridge_stream.connectors.factory").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
