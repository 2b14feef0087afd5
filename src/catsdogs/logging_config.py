"""Logging configuration for the classifier CLI and API."""

import logging
import sys
from typing import Optional, TextIO

from pythonjsonlogger.json import JsonFormatter

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
JSON_FORMAT = '%(asctime)s %(name)s %(levelname)s %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_formatter(fmt: str = 'text') -> logging.Formatter:
    """
    Build a log formatter.

    Args:
        fmt: 'json' for one JSON object per line, 'text' otherwise

    Returns:
        Formatter instance
    """
    if fmt == 'json':
        return JsonFormatter(JSON_FORMAT, datefmt=DATE_FORMAT)
    return logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(level: str = 'INFO',
                  fmt: str = 'text',
                  stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Configure the root logger.

    Replaces handlers installed by a previous call so repeated setup
    (tests, the CLI after the app was imported) does not duplicate output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: 'json' or 'text'
        stream: Stream for the console handler (default: stderr)

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))

    for handler in list(root.handlers):
        if getattr(handler, '_catsdogs', False):
            root.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setFormatter(get_formatter(fmt))
    console_handler._catsdogs = True
    root.addHandler(console_handler)

    return root
