# rest2mqtt/healthz.py
"""Liveness self-check against a locally running bridge."""
from __future__ import annotations

import logging

import httpx

from rest2mqtt.api.discovery import HEALTHZ_PATH

logger = logging.getLogger(__name__)


def check(port: int, host: str = "localhost", timeout: float = 5.0) -> int:
    """Return 0 if ``/healthz`` answers 200, 1 otherwise."""
    url = f"http://{host}:{port}{HEALTHZ_PATH}"
    try:
        resp = httpx.get(url, timeout=timeout)
    except httpx.HTTPError as exc:
        logger.error("Health check failed: %s", exc)
        return 1

    if resp.status_code == 200:
        return 0

    logger.error("Health check failed: %s returned %d", url, resp.status_code)
    return 1
