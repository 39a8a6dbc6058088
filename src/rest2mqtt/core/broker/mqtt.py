# rest2mqtt/core/broker/mqtt.py
"""
MQTT broker connector used by the bridge to republish HTTP requests.

One persistent connection is opened at startup. A supervisor task watches it
and, on transport loss, walks the reconnect state machine::

    CONNECTED --(lost)--> DISCONNECTED --(backoff)--> CONNECTING
    CONNECTING --(ok)--> CONNECTED
    CONNECTING --(failed)--> DISCONNECTED   (delay doubles up to the ceiling)

Publishing while not connected fails immediately instead of waiting for the
next reconnect.

Usage:
    broker = MqttBroker(MqttConfig.from_url("ssl://broker:8883", username="u"))

    async with broker:
        result = await broker.publish(BrokerMessage(
            topic="home/lights",
            payload="on",
            qos=QoS.AT_LEAST_ONCE,
        ))
"""
from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import aiomqtt

from rest2mqtt.contracts.broker import (
    BrokerBase,
    BrokerMessage,
    ConnectionState,
    PublishResult,
)
from rest2mqtt.core.exceptions import BrokerConnectionError, ConfigError

if TYPE_CHECKING:
    from rest2mqtt.core.config import Settings

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

# scheme -> (use_tls, transport, default port)
_SCHEMES: dict[str, tuple[bool, str, int]] = {
    "tcp": (False, "tcp", 1883),
    "mqtt": (False, "tcp", 1883),
    "ssl": (True, "tcp", 8883),
    "tls": (True, "tcp", 8883),
    "mqtts": (True, "tcp", 8883),
    "ws": (False, "websockets", 80),
    "wss": (True, "websockets", 443),
}


@dataclass
class MqttConfig:
    """
    Configuration for the MQTT connection.

    Attributes:
        host: MQTT broker hostname.
        port: MQTT broker port.
        client_id: Client identifier. Kept stable across reconnects so the
            broker resumes the same session.
        username: Optional authentication username.
        password: Optional authentication password.
        use_tls: Whether to use TLS encryption.
        tls_insecure: Skip certificate and hostname verification.
        transport: ``tcp`` or ``websockets``.
        websocket_path: Request path for the websockets transport.
        keepalive: Keepalive interval in seconds.
        clean_session: Whether to start with a clean session.
        reconnect_interval: First delay before a reconnect attempt.
        max_reconnect_interval: Ceiling for the reconnect delay.
        connect_timeout: Seconds to wait for CONNACK.
        publish_timeout: Seconds to wait for a single publish.
    """

    host: str = "localhost"
    port: int = 1883
    client_id: str = "rest2mqtt_localhost"
    username: str | None = None
    password: str | None = None
    use_tls: bool = False
    tls_insecure: bool = True
    transport: str = "tcp"
    websocket_path: str = "/mqtt"
    keepalive: int = 60
    clean_session: bool = False
    reconnect_interval: float = 1.0
    max_reconnect_interval: float = 10.0
    connect_timeout: float = 10.0
    publish_timeout: float = 10.0

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "MqttConfig":
        """
        Build a config from a broker URL such as ``ssl://broker:8883``.

        A bare ``host[:port]`` is treated as ``tcp://``. Remaining fields are
        taken from ``kwargs``.

        Raises:
            ConfigError: On an unknown scheme, a missing host or a bad port.
        """
        if "://" not in url:
            url = f"tcp://{url}"

        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme not in _SCHEMES:
            raise ConfigError(
                f"Unsupported MQTT URL scheme '{scheme}'. "
                f"Supported: {sorted(_SCHEMES)}"
            )
        if not parts.hostname:
            raise ConfigError(f"MQTT URL '{url}' has no host")

        try:
            port = parts.port
        except ValueError as exc:
            raise ConfigError(f"MQTT URL '{url}' has an invalid port") from exc

        use_tls, transport, default_port = _SCHEMES[scheme]
        if transport == "websockets" and parts.path:
            kwargs.setdefault("websocket_path", parts.path)

        return cls(
            host=parts.hostname,
            port=port or default_port,
            use_tls=use_tls,
            transport=transport,
            **kwargs,
        )


def next_backoff(delay: float, ceiling: float) -> float:
    """Double the reconnect delay, capped at ``ceiling``."""
    return min(delay * 2, ceiling)


# =============================================================================
# MQTT Broker Implementation
# =============================================================================


class MqttBroker(BrokerBase):
    """
    MQTT connector using aiomqtt.

    Features:
    - Single persistent connection with a durable client id
    - Transparent reconnection with capped exponential backoff
    - TLS (optionally without verification) and websockets transports
    - Fail-fast, time-bounded publishes
    """

    def __init__(self, config: MqttConfig) -> None:
        self._config = config

        # Connection state
        self._client: aiomqtt.Client | None = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._supervisor_task: asyncio.Task | None = None

    @property
    def config(self) -> MqttConfig:
        """Get the broker configuration."""
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._client is not None

    def _build_tls_context(self) -> ssl.SSLContext | None:
        """Build SSL context if TLS is enabled."""
        if not self._config.use_tls:
            return None

        context = ssl.create_default_context()
        if self._config.tls_insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _new_client(self) -> aiomqtt.Client:
        return aiomqtt.Client(
            hostname=self._config.host,
            port=self._config.port,
            identifier=self._config.client_id,
            username=self._config.username or None,
            password=self._config.password or None,
            tls_context=self._build_tls_context(),
            tls_insecure=self._config.tls_insecure if self._config.use_tls else None,
            transport=self._config.transport,
            websocket_path=(
                self._config.websocket_path
                if self._config.transport == "websockets"
                else None
            ),
            keepalive=self._config.keepalive,
            clean_session=self._config.clean_session,
            timeout=self._config.connect_timeout,
        )

    async def _open(self) -> None:
        """One connection attempt: DISCONNECTED -> CONNECTING -> CONNECTED."""
        self._state = ConnectionState.CONNECTING
        logger.info(
            "Connecting to MQTT broker at %s:%d",
            self._config.host,
            self._config.port,
        )

        client = self._new_client()
        try:
            await client.__aenter__()
        except Exception as exc:
            self._state = ConnectionState.DISCONNECTED
            raise BrokerConnectionError(
                f"Failed to connect to MQTT broker "
                f"{self._config.host}:{self._config.port}: {exc}"
            ) from exc

        self._client = client
        self._state = ConnectionState.CONNECTED
        logger.info(
            "Connected to MQTT broker %s:%d as %s",
            self._config.host,
            self._config.port,
            self._config.client_id,
        )

    async def _close(self) -> None:
        client, self._client = self._client, None
        self._state = ConnectionState.DISCONNECTED
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as exc:
            logger.debug("MQTT client already closed: %s", exc)

    async def _wait_for_disconnect(self) -> None:
        """Block until the transport is lost."""
        if self._client is None:
            return
        try:
            # No subscriptions: the iterator only ends by raising on disconnect.
            async for _ in self._client.messages:
                pass
        except aiomqtt.MqttError as exc:
            logger.warning("Lost connection to MQTT broker: %s", exc)
        await self._close()

    async def _reconnect(self) -> None:
        """Retry until connected, doubling the delay up to the ceiling."""
        delay = self._config.reconnect_interval
        while True:
            logger.info("Reconnecting to MQTT broker in %.1f seconds", delay)
            await asyncio.sleep(delay)
            try:
                async with self._lock:
                    await self._open()
                return
            except BrokerConnectionError as exc:
                logger.warning("%s", exc)
                delay = next_backoff(delay, self._config.max_reconnect_interval)

    async def _supervise(self) -> None:
        while True:
            await self._wait_for_disconnect()
            await self._reconnect()

    async def connect(self) -> None:
        """
        Connect to the MQTT broker and start the reconnect supervisor.

        This method is idempotent. A failed first attempt raises
        ``BrokerConnectionError`` and is not retried.
        """
        async with self._lock:
            if self.is_connected:
                logger.debug("Already connected to MQTT broker")
                return
            await self._open()

        self._supervisor_task = asyncio.create_task(
            self._supervise(),
            name="mqtt-broker-supervisor",
        )

    async def disconnect(self) -> None:
        """Stop the supervisor and close the connection."""
        if self._supervisor_task:
            self._supervisor_task.cancel()
            try:
                await self._supervisor_task
            except asyncio.CancelledError:
                pass
            self._supervisor_task = None

        async with self._lock:
            await self._close()
        logger.info("Disconnected from MQTT broker")

    async def publish(self, message: BrokerMessage) -> PublishResult:
        """
        Publish a message to the MQTT broker.

        Returns:
            PublishResult indicating success or failure.
        """
        client = self._client
        if not self.is_connected or client is None:
            return PublishResult(success=False, error="Not connected to MQTT broker")

        try:
            await client.publish(
                message.topic,
                payload=message.payload,
                qos=int(message.qos),
                retain=message.retain,
                timeout=self._config.publish_timeout,
            )
        except Exception as exc:
            logger.error("Failed to publish to %s: %s", message.topic, exc)
            return PublishResult(success=False, error=str(exc))

        logger.debug(
            "Published to %s (qos=%d, retain=%s)",
            message.topic,
            int(message.qos),
            message.retain,
        )
        return PublishResult(success=True)


# =============================================================================
# Factory Function
# =============================================================================


def create_mqtt_broker(settings: "Settings") -> MqttBroker:
    """Build the connector from application settings."""
    config = MqttConfig.from_url(
        settings.mqtt_host,
        client_id=settings.mqtt_client_id,
        username=settings.mqtt_user or None,
        password=settings.mqtt_password or None,
        tls_insecure=settings.mqtt_tls_insecure,
        keepalive=settings.mqtt_keepalive,
        reconnect_interval=settings.mqtt_reconnect_interval,
        max_reconnect_interval=settings.mqtt_max_reconnect_interval,
        publish_timeout=settings.mqtt_publish_timeout,
    )
    logger.info("Using MQTT host %s", settings.mqtt_host)
    return MqttBroker(config)
