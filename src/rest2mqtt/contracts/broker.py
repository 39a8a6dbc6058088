# rest2mqtt/contracts/broker.py
"""
Broker contract for the bridge.

The admission pipeline and the health probe only need to publish a message
and to ask whether the connection is up. Everything else (transport, TLS,
reconnects) stays behind this contract.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class QoS(int, Enum):
    """Quality of Service levels for message delivery."""

    AT_MOST_ONCE = 0  # Fire and forget
    AT_LEAST_ONCE = 1  # Acknowledged delivery
    EXACTLY_ONCE = 2  # Guaranteed single delivery


class ConnectionState(str, Enum):
    """Connection state of a broker, owned by the broker implementation."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class BrokerMessage:
    """
    A message to be published via the broker.

    Attributes:
        topic: The destination topic.
        payload: The message payload, sent as-is.
        qos: Quality of Service level for delivery.
        retain: Whether the broker should retain the message.
    """

    topic: str
    payload: str
    qos: QoS = QoS.AT_MOST_ONCE
    retain: bool = False


@dataclass
class PublishResult:
    """
    Result of a publish operation.

    Attributes:
        success: Whether the publish succeeded.
        error: Error message if publish failed.
    """

    success: bool
    error: str | None = None


@runtime_checkable
class Broker(Protocol):
    """
    Protocol for message brokers.

    Connection lifecycle, including reconnection, is managed by the
    implementation.
    """

    async def connect(self) -> None:
        """Establish the connection. Raises ``BrokerConnectionError`` on failure."""
        ...

    async def disconnect(self) -> None:
        """Gracefully disconnect from the broker."""
        ...

    async def publish(self, message: BrokerMessage) -> PublishResult:
        """Publish a message. Never blocks waiting for a reconnect."""
        ...

    @property
    def is_connected(self) -> bool:
        """Check if the broker connection is active."""
        ...


class BrokerBase(ABC):
    """Abstract base class for broker implementations."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def publish(self, message: BrokerMessage) -> PublishResult:
        ...

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        ...

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def __aenter__(self) -> "BrokerBase":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
