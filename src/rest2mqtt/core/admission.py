# rest2mqtt/core/admission.py
"""
Admission pipeline for publish requests.

Each inbound request goes through, in order:

1. header authorization (``Authorization: Bearer <token>``), when present;
2. body parsing into :class:`PublishRequest`;
3. body token check, unless the header already authorized the request;
4. topic and payload validation;
5. one publish on the broker.

Every outcome is logged with the caller's address. Rate limiting happens
before the pipeline, in the HTTP interceptor chain.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from rest2mqtt.contracts.broker import Broker, BrokerMessage, QoS
from rest2mqtt.core.exceptions import (
    BadRequest,
    BridgeError,
    PublishFailed,
    Unauthorized,
)

logger = logging.getLogger(__name__)


class Outcome(int, Enum):
    """Result of a request, valued by its HTTP status code."""

    PUBLISHED = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    RATE_LIMITED = 429
    PUBLISH_FAILED = 500

    @property
    def status_code(self) -> int:
        return int(self.value)

    @classmethod
    def from_error(cls, exc: BridgeError) -> "Outcome":
        return cls(exc.status_code)


class PublishRequest(BaseModel):
    """Body of ``POST /v1/mqtt``."""

    model_config = ConfigDict(strict=True, extra="ignore")

    topic: str = ""
    payload: str = ""
    qos: Literal[0, 1, 2] = 0
    retained: bool = False
    token: str | None = None

    def to_message(self) -> BrokerMessage:
        return BrokerMessage(
            topic=self.topic,
            payload=self.payload,
            qos=QoS(self.qos),
            retain=self.retained,
        )


@dataclass(frozen=True)
class InboundPublish:
    """The parts of an HTTP request the pipeline looks at."""

    client: str
    authorization: str | None
    body: bytes


def _matches(candidate: str, secret: str) -> bool:
    return hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


def bearer_token(authorization: str) -> str:
    """Strip a leading ``Bearer `` from an ``Authorization`` header value."""
    return authorization.removeprefix("Bearer ")


class AdmissionPipeline:
    """Authenticates, validates and publishes inbound requests."""

    def __init__(self, token: str, broker: Broker) -> None:
        if not token:
            raise ValueError("Shared secret must not be empty")
        self._token = token
        self._broker = broker

    def _authorize_header(self, inbound: InboundPublish) -> bool:
        """True if the header authorized the request, False if there is none."""
        if not inbound.authorization:
            return False

        if not _matches(bearer_token(inbound.authorization), self._token):
            logger.error(
                "Authorization token mismatch",
                extra={"from": inbound.client},
            )
            raise Unauthorized("authorization header token mismatch")
        return True

    def _parse(self, inbound: InboundPublish) -> PublishRequest:
        try:
            return PublishRequest.model_validate_json(inbound.body)
        except ValidationError as exc:
            logger.info(
                "Malformed request body",
                extra={"from": inbound.client, "error": str(exc)},
            )
            raise BadRequest("malformed request body") from exc

    def _authorize_body(self, inbound: InboundPublish, request: PublishRequest) -> None:
        if request.token is None or not _matches(request.token, self._token):
            logger.error(
                "Message token mismatch",
                extra={"from": inbound.client, "token_present": request.token is not None},
            )
            raise Unauthorized("message token mismatch")

    def _validate(self, inbound: InboundPublish, request: PublishRequest) -> None:
        if request.topic == "":
            logger.info("Topic is blank", extra={"from": inbound.client})
            raise BadRequest("topic is blank")

        if request.payload == "":
            logger.info("Payload is blank", extra={"from": inbound.client})
            raise BadRequest("payload is blank")

    async def _publish(self, inbound: InboundPublish, request: PublishRequest) -> None:
        fields = {
            "from": inbound.client,
            "topic": request.topic,
            "payload": request.payload,
            "qos": request.qos,
            "retained": request.retained,
        }

        try:
            result = await self._broker.publish(request.to_message())
        except Exception as exc:
            logger.exception("Error publishing", extra={**fields, "error": str(exc)})
            raise PublishFailed(str(exc)) from exc

        if not result.success:
            logger.error("Error publishing", extra={**fields, "error": result.error})
            raise PublishFailed(result.error or "publish failed")

        logger.info("Published", extra=fields)

    async def handle_publish(self, inbound: InboundPublish) -> Outcome:
        """Run the pipeline for one request and return its outcome."""
        try:
            header_authorized = self._authorize_header(inbound)
            request = self._parse(inbound)

            if header_authorized:
                if request.token is not None and not _matches(request.token, self._token):
                    # The header takes precedence; the body token is not checked.
                    logger.warning(
                        "Body token ignored: request authorized by header",
                        extra={"from": inbound.client},
                    )
            else:
                self._authorize_body(inbound, request)

            self._validate(inbound, request)
            await self._publish(inbound, request)
        except BridgeError as exc:
            return Outcome.from_error(exc)

        return Outcome.PUBLISHED
