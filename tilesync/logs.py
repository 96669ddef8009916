"""
Structured Logging

Design Decision: Telemetry Transport
====================================

Options Considered:
1. Plain module-level loggers with f-string messages
   - Zero wiring, but fields end up baked into text
   - Tests have to scrape log output
2. structlog bound loggers
   - Every event is a name plus key/value fields
   - bind(**context) returns a new logger, so concurrent transfers never
     share mutable context
   - Tests inject a logger that captures event dicts

Decision: structlog, routed through the standard library
- Components take an optional `log` and fall back to get_logger()
- Each operation binds its own context (map_id, direction)
- setup_logging() renders events to stdlib handlers, so the CLI's
  RichHandler formats them like any other log line
"""

import logging
from typing import List, Optional

import structlog

LOGGER_NAME = 'tilesync'


def setup_logging(level: str = 'INFO', handlers: Optional[List[logging.Handler]] = None):
    """
    Route structlog events through the standard logging module.

    Args:
        level: Root log level name
        handlers: stdlib handlers (default: stderr StreamHandler)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=handlers,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def get_logger(name: str = LOGGER_NAME, **context):
    """Logger used when a component is constructed without one."""
    return structlog.get_logger(name, **context)
