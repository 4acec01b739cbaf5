"""Structured logging for the survey analytics core.

Modules obtain their logger with ``get_logger(__name__)``. Logging is routed
through the standard library so host applications keep control of handlers;
``configure_logging`` installs the structlog processor chain once.

Until then a stdlib-backed default is installed at import, so events below
the root logger's level (WARNING unless the host says otherwise) are dropped
and nothing is ever printed to stdout.
"""

import logging
import sys
from typing import Optional

import structlog

_configured = False


def _processors(json_output: bool = False) -> list:
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    return processors


def install_default_logging() -> None:
    """Route structlog through stdlib logging without touching its handlers"""
    structlog.configure(
        processors=_processors(),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=False,
    )


def configure_logging(level: str = "INFO", json_output: bool = False, force: bool = False) -> None:
    """Configure structlog and the stdlib root handler"""
    global _configured
    if _configured and not force:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)

    # Loggers bound before this call must pick up the new chain
    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
        force=force,
    )
    logging.getLogger().setLevel(log_level)
    _configured = True


def get_logger(name: Optional[str] = None):
    """Get a structured logger bound to ``name``"""
    return structlog.get_logger(name)


if not structlog.is_configured():
    install_default_logging()
