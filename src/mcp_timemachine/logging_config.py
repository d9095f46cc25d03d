"""Process-wide logging setup.

Logs go to stderr; stdout carries the MCP stdio transport.

Environment Variables:
    TIMEMACHINE_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (overrides config)
    TIMEMACHINE_LOG_FORMAT: text or json (overrides config)
"""

import logging
import os
import sys
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def setup_logging(level: str = "INFO", fmt: str = "text", stream: Optional[object] = None) -> logging.Handler:
    """Configure the root logger with a single stderr handler.

    Returns the installed handler.
    """
    level = os.getenv("TIMEMACHINE_LOG_LEVEL", level).upper()
    fmt = os.getenv("TIMEMACHINE_LOG_FORMAT", fmt).lower()
    numeric_level = logging.getLevelName(level)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    if fmt == "json":
        formatter: logging.Formatter = JsonFormatter(
            JSON_FORMAT,
            rename_fields={
                "asctime": "timestamp",
                "name": "logger",
                "levelname": "level",
            },
        )
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # The MCP SDK is chatty at INFO
    logging.getLogger("mcp").setLevel(max(numeric_level, logging.WARNING))
    return handler
