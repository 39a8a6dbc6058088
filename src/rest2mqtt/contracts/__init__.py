from rest2mqtt.contracts.broker import (
    Broker,
    BrokerBase,
    BrokerMessage,
    ConnectionState,
    PublishResult,
    QoS,
)

__all__ = [
    "Broker",
    "BrokerBase",
    "BrokerMessage",
    "ConnectionState",
    "PublishResult",
    "QoS",
]
