from typing import TypedDict

from loguru import logger

from .mqtt_impl import MQTTBroadcaster, NoOpBroadcaster


class BroadcasterConfig(TypedDict):
    """Configuration for broadcaster instance."""

    url: str | None


_broadcaster: MQTTBroadcaster | NoOpBroadcaster | None = None
_broadcaster_config: BroadcasterConfig | None = None


def get_broadcaster(url: str | None = None) -> MQTTBroadcaster | NoOpBroadcaster:
    """Get or create the process-wide broadcaster.

    Args:
        url: MQTT broker URL (e.g., mqtt://<host_ip>:<port>).
             If None, returns NoOpBroadcaster.

    Raises:
        RuntimeError: If broadcaster creation or connection fails.
    """
    global _broadcaster, _broadcaster_config

    desired_config: BroadcasterConfig = {"url": url}

    if _broadcaster is not None and _broadcaster_config == desired_config:
        return _broadcaster

    if _broadcaster is not None:
        try:
            _broadcaster.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting previous broadcaster: {e}")
        _broadcaster = None
        _broadcaster_config = None

    try:
        broadcaster = NoOpBroadcaster() if url is None else MQTTBroadcaster(url)
    except ValueError as e:
        raise RuntimeError(f"Failed to create broadcaster: {e}") from e

    if not broadcaster.connect():
        raise RuntimeError(
            f"Failed to connect to MQTT broker at {url}. "
            "Check that the broker is running and the URL is correct."
        )

    _broadcaster = broadcaster
    _broadcaster_config = desired_config
    return _broadcaster


def shutdown_broadcaster():
    """Shutdown global broadcaster."""
    global _broadcaster, _broadcaster_config
    if _broadcaster:
        _broadcaster.disconnect()
        _broadcaster = None
        _broadcaster_config = None
