from rest2mqtt.core.broker.mqtt import (
    MqttBroker,
    MqttConfig,
    create_mqtt_broker,
    next_backoff,
)

__all__ = ["MqttBroker", "MqttConfig", "create_mqtt_broker", "next_backoff"]
