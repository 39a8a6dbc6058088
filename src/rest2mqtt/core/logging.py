# rest2mqtt/core/logging.py
"""
Process-wide JSON logging.

Every record goes to stdout as one JSON object. Fields passed through
``extra=`` (``from``, ``topic``, ``payload``, ``qos``, ``retained``,
``error``) become top-level keys. Called once by the CLI before the app is
built.
"""
from __future__ import annotations

import logging
import sys

from pythonjsonlogger import jsonlogger

UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def configure_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the root logger at ``level``."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )

    # Replaces any handler left by a previous call
    root.handlers = [handler]

    # uvicorn installs its own handlers unless log_config is None
    for name in UVICORN_LOGGERS:
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.propagate = True
