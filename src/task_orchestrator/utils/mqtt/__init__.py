from .mqtt_impl import (
    BroadcasterBase,
    InvalidMQTTURLException,
    MQTTBroadcaster,
    NoOpBroadcaster,
    UnsupportedMQTTURLException,
    parse_mqtt_url,
    topic_matches,
)
from .mqtt_instance import get_broadcaster, shutdown_broadcaster

__all__ = [
    "BroadcasterBase",
    "InvalidMQTTURLException",
    "MQTTBroadcaster",
    "NoOpBroadcaster",
    "UnsupportedMQTTURLException",
    "get_broadcaster",
    "parse_mqtt_url",
    "shutdown_broadcaster",
    "topic_matches",
]
