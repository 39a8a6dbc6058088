# rest2mqtt/api/v1.py
"""
Versioned action endpoints, behind the ``/v1`` interceptor chain.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response

from rest2mqtt.api.dependencies import V1_INTERCEPTORS, client_address
from rest2mqtt.core.admission import AdmissionPipeline, InboundPublish

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", dependencies=V1_INTERCEPTORS)


@router.post("/mqtt", response_class=Response)
async def publish_mqtt(request: Request, response: Response) -> None:
    """Republish the request body as an MQTT message."""
    pipeline: AdmissionPipeline = request.app.state.pipeline
    inbound = InboundPublish(
        client=client_address(request),
        authorization=request.headers.get("Authorization"),
        body=await request.body(),
    )
    outcome = await pipeline.handle_publish(inbound)
    response.status_code = outcome.status_code


async def dump_request(request: Request) -> str:
    """Render the request roughly as it came over the wire."""
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    version = request.scope.get("http_version", "1.1")

    lines = [f"{request.method} {target} HTTP/{version}"]
    lines.extend(f"{name}: {value}" for name, value in request.headers.items())
    body = await request.body()
    return "\r\n".join(lines) + "\r\n\r\n" + body.decode("utf-8", errors="replace")


@router.post("/log", response_class=Response)
async def log_request(request: Request) -> None:
    """Echo the raw request to the operator log."""
    logger.info("Request\n%s\n", await dump_request(request))
