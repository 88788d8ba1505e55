"""MQTT broadcaster for task change events and notifications."""

import time
from typing import Callable, Protocol, override
from urllib.parse import urlparse
from uuid import uuid4

import paho.mqtt.client as mqtt
from loguru import logger
from paho.mqtt.client import ConnectFlags, DisconnectFlags, MQTTMessage
from paho.mqtt.enums import CallbackAPIVersion
from paho.mqtt.properties import Properties
from paho.mqtt.reasoncodes import ReasonCode

MessageCallback = Callable[[str, str], None]


class InvalidMQTTURLException(ValueError):
    def __init__(self, url: str | None, reason: str):
        self.url: str | None = url
        super().__init__(f"Invalid MQTT URL '{url}': {reason}")


class UnsupportedMQTTURLException(ValueError):
    def __init__(self, url: str, scheme: str):
        self.url: str = url
        self.scheme: str = scheme
        super().__init__(f"Unsupported MQTT URL scheme '{scheme}' in '{url}' (expected mqtt://)")


def parse_mqtt_url(url: str | None) -> tuple[str, int]:
    """Split mqtt://host:port into (host, port). Port defaults to 1883."""
    if url is None:
        raise ValueError("MQTT URL cannot be None")
    parsed = urlparse(url)
    if not parsed.scheme:
        raise InvalidMQTTURLException(url, "missing scheme")
    if parsed.scheme != "mqtt":
        raise UnsupportedMQTTURLException(url, parsed.scheme)
    if not parsed.hostname:
        raise InvalidMQTTURLException(url, "missing host")
    try:
        port = parsed.port or 1883
    except ValueError as e:
        raise InvalidMQTTURLException(url, str(e)) from e
    return parsed.hostname, port


def topic_matches(pattern: str, topic: str) -> bool:
    """MQTT wildcard match: '+' is one level, a trailing '#' is any suffix."""
    if pattern == topic:
        return True

    pattern_parts = pattern.split("/")
    topic_parts = topic.split("/")

    for index, part in enumerate(pattern_parts):
        if part == "#":
            return index == len(pattern_parts) - 1
        if index >= len(topic_parts):
            return False
        if part != "+" and part != topic_parts[index]:
            return False

    return len(pattern_parts) == len(topic_parts)


# NoOpBroadcaster must not require configuration, so the protocol does not
# make the URL mandatory.
class BroadcasterBase(Protocol):
    connected: bool

    def __init__(self, mqtt_url: str | None = None):
        self.connected = False

    def connect(self) -> bool:
        return False

    def disconnect(self):
        pass

    def publish_event(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        return False

    def publish_retained(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        return False

    def clear_retained(self, topic: str, qos: int = 1) -> bool:
        return False

    def subscribe(self, *, topic: str, callback: MessageCallback, qos: int = 1) -> str | None:
        return None

    def unsubscribe(self, subscription_id: str) -> bool:
        return False


class MQTTBroadcaster(BroadcasterBase):
    """MQTT v5 broadcaster.

    Several local subscriptions may share one broker-level subscription; the
    broker subscription is dropped when the last local one goes away.
    Callbacks run on the paho network thread.
    """

    def __init__(self, mqtt_url: str | None = None):
        super().__init__(mqtt_url)
        self.broker: str
        self.port: int
        self.broker, self.port = parse_mqtt_url(mqtt_url)
        self.url: str = f"mqtt://{self.broker}:{self.port}"
        self.client: mqtt.Client | None = None
        self.connected: bool = False
        self.subscriptions: dict[str, tuple[str, MessageCallback]] = {}

    @override
    def connect(self) -> bool:
        try:
            logger.info(f"Connecting to MQTT broker {self.url}")
            self.client = mqtt.Client(
                callback_api_version=CallbackAPIVersion.VERSION2,
                protocol=mqtt.MQTTv5,
            )
            self.client.on_connect = self._on_connect
            self.client.on_disconnect = self._on_disconnect
            self.client.on_message = self._on_message

            _ = self.client.reconnect_delay_set(min_delay=1, max_delay=30)
            _ = self.client.loop_start()
            _ = self.client.connect(self.broker, self.port, keepalive=60, clean_start=True)

            timeout = 5
            start_time = time.time()
            while not self.connected and (time.time() - start_time) < timeout:
                time.sleep(0.1)

            return self.connected
        except Exception as e:
            logger.warning(f"Failed to connect to MQTT broker {self.url}: {e}")
            self.connected = False
            return False

    @override
    def disconnect(self):
        self.subscriptions.clear()
        if self.client:
            _ = self.client.loop_stop()
            _ = self.client.disconnect()
            self.connected = False

    @override
    def publish_event(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        return self._publish(topic, payload, qos=qos, retain=False)

    @override
    def publish_retained(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        return self._publish(topic, payload, qos=qos, retain=True)

    @override
    def clear_retained(self, topic: str, qos: int = 1) -> bool:
        return self.publish_retained(topic=topic, payload="", qos=qos)

    def _publish(self, topic: str, payload: str, *, qos: int, retain: bool) -> bool:
        if not self.connected or not self.client:
            return False
        try:
            result = self.client.publish(topic, payload, qos=qos, retain=retain)
            return result.rc == mqtt.MQTT_ERR_SUCCESS
        except Exception as e:
            logger.error(f"Error publishing to {topic}: {e}")
            return False

    @override
    def subscribe(self, *, topic: str, callback: MessageCallback, qos: int = 1) -> str | None:
        if not self.connected or not self.client:
            return None

        try:
            already_subscribed = any(t == topic for t, _ in self.subscriptions.values())
            if not already_subscribed:
                result, _mid = self.client.subscribe(topic, qos=qos)
                if result != mqtt.MQTT_ERR_SUCCESS:
                    logger.error(f"Failed to subscribe to {topic}: error code {result}")
                    return None

            subscription_id = str(uuid4())
            self.subscriptions[subscription_id] = (topic, callback)
            logger.info(f"Subscribed to topic: {topic} (subscription_id: {subscription_id})")
            return subscription_id
        except Exception as e:
            logger.error(f"Error subscribing to topic {topic}: {e}")
            return None

    @override
    def unsubscribe(self, subscription_id: str) -> bool:
        if not self.connected or not self.client:
            return False

        try:
            if subscription_id not in self.subscriptions:
                logger.warning(f"Subscription ID not found: {subscription_id}")
                return False

            topic, _ = self.subscriptions.pop(subscription_id)

            still_subscribed = any(t == topic for t, _ in self.subscriptions.values())
            if not still_subscribed:
                result, _mid = self.client.unsubscribe(topic)
                if result != mqtt.MQTT_ERR_SUCCESS:
                    logger.error(f"Failed to unsubscribe from {topic}: error code {result}")
                    return False

            logger.info(f"Unsubscribed: {subscription_id} from topic: {topic}")
            return True
        except Exception as e:
            logger.error(f"Error unsubscribing {subscription_id}: {e}")
            return False

    #
    # MQTT v5 callbacks
    #
    def _on_connect(
        self,
        _client: mqtt.Client,
        _userdata: object,
        _flags: ConnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None,
    ) -> None:
        self.connected = reason_code == 0
        if self.connected:
            logger.info("MQTT connected using v5")
        else:
            logger.warning(f"MQTT connection failed: reason={reason_code}, props={properties}")

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: object,
        _disconnect_flags: DisconnectFlags,
        reason_code: ReasonCode,
        _properties: Properties | None,
    ) -> None:
        self.connected = False
        logger.warning(f"MQTT disconnected: {reason_code}")

    def _on_message(self, _client: mqtt.Client, _userdata: object, message: MQTTMessage) -> None:
        try:
            received_topic = message.topic
            payload = message.payload.decode("utf-8")

            for subscription_id, (subscribed_topic, callback) in list(self.subscriptions.items()):
                if not topic_matches(subscribed_topic, received_topic):
                    continue
                try:
                    callback(received_topic, payload)
                except Exception as callback_error:
                    logger.error(
                        f"Error in callback for subscription {subscription_id}: {callback_error}"
                    )
        except Exception as e:
            logger.error(f"Error in message callback for topic {message.topic}: {e}")


class NoOpBroadcaster(BroadcasterBase):
    """Broadcaster used when MQTT is not configured. Publishing always succeeds."""

    connected: bool

    def __init__(self, mqtt_url: str | None = None):
        super().__init__(mqtt_url)
        self.connected = True

    @override
    def connect(self) -> bool:
        return True

    @override
    def disconnect(self):
        pass

    @override
    def publish_event(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        return True

    @override
    def publish_retained(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        return True

    @override
    def clear_retained(self, topic: str, qos: int = 1) -> bool:
        return True

    @override
    def subscribe(self, *, topic: str, callback: MessageCallback, qos: int = 1) -> str | None:
        """Accepts the call but returns None: nothing will ever be delivered."""
        return None

    @override
    def unsubscribe(self, subscription_id: str) -> bool:
        return False
