# rest2mqtt/main.py
"""
Bridge application factory.

Creates the FastAPI application and wires the settings, the MQTT connector,
the rate limiter and the admission pipeline explicitly into ``app.state``.
The broker connection is opened in the lifespan; failing to connect aborts
startup.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response

from rest2mqtt.api.dependencies import rate_limit_headers
from rest2mqtt.api.discovery import router as discovery_router
from rest2mqtt.api.v1 import router as v1_router
from rest2mqtt.contracts.broker import Broker
from rest2mqtt.core.admission import AdmissionPipeline
from rest2mqtt.core.broker.mqtt import create_mqtt_broker
from rest2mqtt.core.config import Settings, load_settings
from rest2mqtt.core.exceptions import BridgeError, RateLimited
from rest2mqtt.core.ratelimit import RateLimiter, create_rate_limiter

logger = logging.getLogger(__name__)


# -- Lifespan ------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    broker: Broker = app.state.broker

    # BrokerConnectionError propagates: no degraded mode without a broker.
    await broker.connect()
    logger.info("Bridge ready")

    yield

    await broker.disconnect()


# -- Error handlers ------------------------------------------------------------


async def bridge_error_handler(request: Request, exc: BridgeError) -> Response:
    response = Response(status_code=exc.status_code)
    if isinstance(exc, RateLimited):
        response.headers.update(rate_limit_headers(exc.decision))
        response.headers["Retry-After"] = str(exc.decision.retry_after)
    return response


async def unhandled_error_handler(request: Request, exc: Exception) -> Response:
    logger.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return Response(status_code=500)


# -- Application factory -------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    broker: Broker | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """
    Build and wire the bridge application.

    Args:
        settings: Application settings; loaded from the environment if None.
        broker: Broker to publish to; an MQTT connector is built if None.
        rate_limiter: Limiter for the ``/v1`` group; built from settings if None.

    Raises:
        ConfigError: If the settings, broker URL, rate policy or Redis URL
            are invalid.
    """
    if settings is None:
        settings = load_settings()

    if broker is None:
        broker = create_mqtt_broker(settings)

    if rate_limiter is None:
        rate_limiter = create_rate_limiter(
            settings.rate_limit,
            settings.redis_url,
            enabled=not settings.skip_rate_limit,
        )

    app = FastAPI(
        title="rest2mqtt",
        version="1.0.0",
        description="HTTP to MQTT bridge",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Explicit wiring
    app.state.settings = settings
    app.state.broker = broker
    app.state.rate_limiter = rate_limiter
    app.state.pipeline = AdmissionPipeline(token=settings.token, broker=broker)

    app.add_exception_handler(BridgeError, bridge_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(discovery_router)
    app.include_router(v1_router)

    logger.info(
        "Rate limit %d per %ds (%s)",
        rate_limiter.policy.limit,
        rate_limiter.policy.period,
        "enabled" if rate_limiter.enabled else "disabled",
    )
    return app
