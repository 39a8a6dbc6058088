from __future__ import annotations

import asyncio

import aiomqtt
import pytest

from rest2mqtt.contracts.broker import BrokerMessage, ConnectionState, QoS
from rest2mqtt.core.broker import mqtt as mqtt_module
from rest2mqtt.core.broker.mqtt import (
    MqttBroker,
    MqttConfig,
    create_mqtt_broker,
    next_backoff,
)
from rest2mqtt.core.config import Settings
from rest2mqtt.core.exceptions import BrokerConnectionError, ConfigError


# -- fixtures / helpers --------------------------------------------------


class FakeMqttClient:
    """Stands in for ``aiomqtt.Client``; ``refuse`` fails the next N connects."""

    instances: list["FakeMqttClient"] = []
    refuse = 0

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.lost = asyncio.Event()
        self.published: list[tuple] = []
        self.closed = False
        FakeMqttClient.instances.append(self)

    async def __aenter__(self):
        if FakeMqttClient.refuse:
            FakeMqttClient.refuse -= 1
            raise aiomqtt.MqttError("Connection refused")
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True

    @property
    def messages(self):
        return self._messages()

    async def _messages(self):
        await self.lost.wait()
        raise aiomqtt.MqttError("Disconnected during message iteration")
        yield  # pragma: no cover

    async def publish(self, topic, payload=None, qos=0, retain=False, timeout=None):
        self.published.append((topic, payload, qos, retain, timeout))


@pytest.fixture
def fake_client(monkeypatch):
    FakeMqttClient.instances = []
    FakeMqttClient.refuse = 0
    monkeypatch.setattr(mqtt_module.aiomqtt, "Client", FakeMqttClient)
    return FakeMqttClient


def fast_config(**kwargs) -> MqttConfig:
    return MqttConfig(reconnect_interval=0.01, max_reconnect_interval=0.02, **kwargs)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


# -- config --------------------------------------------------------------


@pytest.mark.parametrize(
    "url, host, port, use_tls, transport",
    [
        ("tcp://broker:1884", "broker", 1884, False, "tcp"),
        ("mqtt://broker", "broker", 1883, False, "tcp"),
        ("ssl://broker", "broker", 8883, True, "tcp"),
        ("tls://broker:8884", "broker", 8884, True, "tcp"),
        ("mqtts://broker", "broker", 8883, True, "tcp"),
        ("ws://broker", "broker", 80, False, "websockets"),
        ("wss://broker:8443", "broker", 8443, True, "websockets"),
        ("broker:1883", "broker", 1883, False, "tcp"),
        ("broker", "broker", 1883, False, "tcp"),
    ],
)
def test_config_from_url(url, host, port, use_tls, transport):
    config = MqttConfig.from_url(url)

    assert (config.host, config.port, config.use_tls, config.transport) == (
        host,
        port,
        use_tls,
        transport,
    )


def test_config_from_url_websocket_path():
    assert MqttConfig.from_url("wss://broker/ws").websocket_path == "/ws"
    assert MqttConfig.from_url("wss://broker").websocket_path == "/mqtt"


@pytest.mark.parametrize("url", ["http://broker", "tcp://", "tcp://broker:notaport"])
def test_config_from_url_rejects(url):
    with pytest.raises(ConfigError):
        MqttConfig.from_url(url)


def test_create_mqtt_broker_uses_durable_identity():
    settings = Settings(
        _env_file=None,
        token="t",
        mqtt_host="ssl://broker:8883",
        mqtt_user="bridge",
        mqtt_password="pw",
        hostname="pod-1",
    )

    broker = create_mqtt_broker(settings)

    assert broker.config.client_id == "rest2mqtt_pod-1"
    assert broker.config.clean_session is False
    assert broker.config.use_tls is True
    assert broker.config.username == "bridge"
    assert broker.config.max_reconnect_interval == 10.0


def test_next_backoff_is_capped():
    delays = [1.0]
    for _ in range(5):
        delays.append(next_backoff(delays[-1], 10.0))

    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


def test_tls_context_skips_verification_when_insecure():
    broker = MqttBroker(MqttConfig(use_tls=True, tls_insecure=True))

    context = broker._build_tls_context()

    assert context is not None
    assert context.check_hostname is False


# -- connection lifecycle ------------------------------------------------


@pytest.mark.asyncio
async def test_publish_while_disconnected_fails_fast():
    broker = MqttBroker(MqttConfig())

    result = await broker.publish(BrokerMessage(topic="t", payload="p"))

    assert result.success is False
    assert broker.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_connect_failure_raises(fake_client):
    fake_client.refuse = 1
    broker = MqttBroker(fast_config())

    with pytest.raises(BrokerConnectionError):
        await broker.connect()

    assert broker.state is ConnectionState.DISCONNECTED
    assert len(fake_client.instances) == 1


@pytest.mark.asyncio
async def test_connect_and_publish(fake_client):
    broker = MqttBroker(fast_config(client_id="rest2mqtt_test", publish_timeout=3.0))

    async with broker:
        assert broker.is_connected
        result = await broker.publish(
            BrokerMessage(topic="home/lights", payload="on", qos=QoS.AT_LEAST_ONCE)
        )
        client = fake_client.instances[0]

    assert result.success is True
    assert client.published == [("home/lights", "on", 1, False, 3.0)]
    assert client.kwargs["identifier"] == "rest2mqtt_test"
    assert client.kwargs["clean_session"] is False
    assert client.closed
    assert broker.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_connect_is_idempotent(fake_client):
    broker = MqttBroker(fast_config())

    await broker.connect()
    await broker.connect()

    assert len(fake_client.instances) == 1
    await broker.disconnect()


@pytest.mark.asyncio
async def test_reconnects_after_transport_loss(fake_client):
    broker = MqttBroker(fast_config(client_id="rest2mqtt_pod"))
    await broker.connect()
    first = fake_client.instances[0]

    first.lost.set()
    await wait_for(lambda: len(fake_client.instances) == 2 and broker.is_connected)

    assert first.closed
    assert fake_client.instances[1].kwargs["identifier"] == "rest2mqtt_pod"
    result = await broker.publish(BrokerMessage(topic="t", payload="p"))
    assert result.success is True
    assert fake_client.instances[1].published
    await broker.disconnect()


@pytest.mark.asyncio
async def test_reconnect_retries_until_success(fake_client):
    broker = MqttBroker(
        MqttConfig(reconnect_interval=0.05, max_reconnect_interval=0.05)
    )
    await broker.connect()
    fake_client.refuse = 2

    fake_client.instances[0].lost.set()
    await wait_for(lambda: broker.state is not ConnectionState.CONNECTED)
    while_down = await broker.publish(BrokerMessage(topic="t", payload="p"))
    await wait_for(lambda: broker.is_connected)

    assert while_down.success is False
    assert len(fake_client.instances) == 4
    await broker.disconnect()


@pytest.mark.asyncio
async def test_publish_error_is_reported(fake_client):
    broker = MqttBroker(fast_config())
    await broker.connect()

    async def failing_publish(*args, **kwargs):
        raise aiomqtt.MqttError("Operation timed out")

    fake_client.instances[0].publish = failing_publish
    result = await broker.publish(BrokerMessage(topic="t", payload="p"))

    assert result.success is False
    assert result.error
    assert broker.is_connected
    await broker.disconnect()
