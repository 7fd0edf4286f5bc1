"""
Structured logging setup
"""
import logging
import sys
from typing import Optional

import structlog


def setup_logging(
    level: str = "INFO",
    destination: Optional[str] = None,
    json_logs: bool = True
) -> structlog.stdlib.BoundLogger:
    """
    Route structlog and stdlib records to stdout and, when a destination
    file is given, to that file as well.

    Args:
        level: Root log level name
        destination: Optional path of an additional log file
        json_logs: Render JSON lines instead of the console format

    Returns:
        Logger bound to this package, for explicit injection into services
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handlers = [logging.StreamHandler(sys.stdout)]
    if destination:
        handlers.append(logging.FileHandler(destination, encoding="utf-8"))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return structlog.get_logger("paralegal_api")
