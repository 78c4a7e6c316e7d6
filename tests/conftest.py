"""
pytest fixtures and an in-memory transport for python-homesync tests.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from homesync.config import load_devices
from homesync.exceptions import TransportError
from homesync.fanout import NotificationFanout
from homesync.registry import DeviceRegistry
from homesync.sync import StateSynchronizer

# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------


class FakeTransport:
    """
    Records publishes and subscriptions instead of talking to a broker.

    Set ``fail_publish`` to make every publish raise ``TransportError``.
    ``deliver(topic, payload)`` injects an inbound message as the broker would.
    """

    def __init__(self) -> None:
        self.published: list[tuple[str, bytes, int]] = []
        self.subscribed: list[tuple[str, int]] = []
        self.fail_publish = False
        self.fail_subscribe: set[str] = set()
        self.handler: Any = None
        self.connection_lost_callbacks: list[Any] = []

    def publish(self, topic: str, payload: bytes, qos: int) -> None:
        if self.fail_publish:
            raise TransportError(f"Not connected; cannot publish to {topic}")
        self.published.append((topic, payload, qos))

    def subscribe(self, topic: str, qos: int) -> None:
        if topic in self.fail_subscribe:
            raise TransportError(f"Subscribe to {topic} failed rc=128")
        self.subscribed.append((topic, qos))

    def set_message_handler(self, handler: Any) -> None:
        self.handler = handler

    def add_connection_lost_callback(self, callback: Any) -> None:
        self.connection_lost_callbacks.append(callback)

    # -- test helpers --------------------------------------------------

    def deliver(self, topic: str, payload: bytes) -> Any:
        return self.handler(topic, payload)

    def drop_connection(self, cause: object = 7) -> None:
        for cb in self.connection_lost_callbacks:
            cb(cause)

    def echo_last(self) -> Any:
        """Loop the most recent publish back, as a broker does for a subscribed publisher."""
        topic, payload, _qos = self.published[-1]
        return self.deliver(topic, payload)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_devices() -> list[tuple[str, int, str, str]]:
    """A small house: two lamps, an entrance, a temperature sensor and a smoke detector."""
    return [
        ("home/room1/lamp", 0, "lamp", "Lamp 1"),
        ("home/kitchen/lamp", 0, "lamp", "Kitchen Lamp"),
        ("home/foyer/entrance", 1, "entrance", "Foyer Entrance"),
        ("home/livingroom/temperature", 0, "temperature", "Living Room Temperature Sensor"),
        ("home/kitchen/smoke", 1, "smoke", "Kitchen Smoke Detector"),
    ]


@pytest.fixture
def registry(sample_devices) -> DeviceRegistry:
    return DeviceRegistry(load_devices(sample_devices))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fanout() -> NotificationFanout:
    return NotificationFanout()


@pytest.fixture
def sync(registry, transport, fanout) -> StateSynchronizer:
    return StateSynchronizer(registry, transport, fanout)


@pytest.fixture
def notifications(fanout) -> list:
    """Every record delivered to observers, in delivery order."""
    seen: list = []
    fanout.subscribe(seen.append)
    return seen


@pytest.fixture
def mock_paho_client():
    """
    Return a MagicMock that pretends to be a paho-mqtt Client.

    Auto-fires the paho v2 ``on_connect`` callback (rc=0) when
    ``connect()`` is called.
    """
    with patch("paho.mqtt.client.Client") as MockClient:  # noqa: N806
        mock_instance = MagicMock()
        MockClient.return_value = mock_instance

        # (client, userdata, flags, reason_code, props)
        def connect_side_effect(host, port, **kwargs):
            if mock_instance.on_connect:
                mock_instance.on_connect(mock_instance, None, None, 0, None)

        mock_instance.connect.side_effect = connect_side_effect
        mock_instance.publish.return_value = MagicMock(rc=0)
        mock_instance.subscribe.return_value = (0, 1)
        yield mock_instance
