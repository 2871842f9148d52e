import logging
import os
import sys
from pathlib import Path

from pythonjsonlogger import jsonlogger


def setup_logging(stdio_mode=False):
    """
    Configures the root logger to output structured JSON logs.
    Log level can be set via the LOG_LEVEL environment variable.

    Args:
        stdio_mode: If True, stdout carries the MCP protocol, so logs go to
                   stderr, or to MCP_BRIDGE_LOG_FILE when it is set.
                   If False, logs go to stdout.
    """
    log_level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    log = logging.getLogger()
    log.setLevel(log_level)

    log_file = os.environ.get("MCP_BRIDGE_LOG_FILE")
    if stdio_mode and log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode="a")
    elif stdio_mode:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.StreamHandler(sys.stdout)

    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s"
    )
    handler.setFormatter(formatter)

    # Avoid adding duplicate handlers
    if not log.handlers:
        log.addHandler(handler)
