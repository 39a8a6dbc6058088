# rest2mqtt/core/exceptions.py
"""
Error taxonomy for the bridge.

Per-request errors derive from ``BridgeError`` and carry the HTTP status the
front door answers with. Startup errors (``ConfigError``,
``BrokerConnectionError``) are fatal and never reach a caller.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rest2mqtt.core.ratelimit import RateLimitDecision


class BridgeError(Exception):
    status_code: int = 500


class BadRequest(BridgeError):
    status_code = 400


class Unauthorized(BridgeError):
    status_code = 401


class RateLimited(BridgeError):
    status_code = 429

    def __init__(self, decision: "RateLimitDecision") -> None:
        super().__init__(f"rate limit of {decision.limit} exceeded")
        self.decision = decision


class PublishFailed(BridgeError):
    status_code = 500


class ConfigError(Exception):
    pass


class BrokerConnectionError(Exception):
    pass
