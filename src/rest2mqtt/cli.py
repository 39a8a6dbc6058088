# rest2mqtt/cli.py
"""
Command line entry point.

    rest2mqtt                 serve traffic
    rest2mqtt --healthz       probe a running instance, exit 0 (healthy) or 1
"""
from __future__ import annotations

import argparse
import logging
import sys

import uvicorn

from rest2mqtt.core.config import ListenSettings, Settings, load_settings
from rest2mqtt.core.exceptions import ConfigError
from rest2mqtt.core.logging import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rest2mqtt",
        description="Publish MQTT messages from authenticated HTTP requests",
    )
    parser.add_argument(
        "--healthz",
        action="store_true",
        help="Check the local instance's /healthz and exit with 0 or 1",
    )
    parser.add_argument("--host", help="Listen address (overrides HOST)")
    parser.add_argument("--port", type=int, help="Listen port (overrides PORT)")
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> dict:
    return {
        key: value
        for key, value in (("host", args.host), ("port", args.port))
        if value is not None
    }


def healthz(args: argparse.Namespace) -> int:
    from rest2mqtt.healthz import check

    settings = load_settings(ListenSettings, **_overrides(args))
    configure_logging(settings.log_level)
    return check(settings.port)


def serve(args: argparse.Namespace) -> int:
    from rest2mqtt.main import create_app

    settings: Settings = load_settings(Settings, **_overrides(args))
    configure_logging(settings.log_level)

    app = create_app(settings)
    logger.info("Starting on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        return healthz(args) if args.healthz else serve(args)
    except ConfigError as exc:
        configure_logging()
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
