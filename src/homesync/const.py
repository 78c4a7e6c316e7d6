"""
homesync.const — Constants for the homesync MQTT interface.

Broker defaults, payload tokens, presentation colours and the reference
house device table used when no device list is supplied.

Topics follow the pattern ``home/{room}/{kind}``, e.g. ``home/room1/lamp``.
Payloads are plain UTF-8 text such as ``"home/room1/lamp: ON"``.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

#: Default broker host (a local mosquitto / EMQX instance).
DEFAULT_BROKER = "localhost"

#: Broker plaintext port.
DEFAULT_PORT = 1883

#: Broker TLS port.
DEFAULT_PORT_TLS = 8883

#: Default MQTT client id.
DEFAULT_CLIENT_ID = "IoTAppClient"

#: MQTT keepalive interval in seconds.
MQTT_KEEPALIVE = 60

#: Default timeout (seconds) waiting for broker connection.
DEFAULT_CONNECT_TIMEOUT = 10.0

#: Topic prefix shared by every device of the reference house.
TOPIC_PREFIX = "home"

# ---------------------------------------------------------------------------
# Payload grammar
# ---------------------------------------------------------------------------

#: Token emitted by the encoder for a truthy state.
TOKEN_ON = "ON"

#: Token emitted by the encoder for a falsy state.
TOKEN_OFF = "OFF"

#: Word tokens accepted by every device kind, anywhere in the payload body.
COMMON_ON_TOKENS: frozenset[str] = frozenset({"ON", "TRUE"})
COMMON_OFF_TOKENS: frozenset[str] = frozenset({"OFF", "FALSE"})

#: Digit tokens, accepted only when they make up the whole body.
BARE_ON_TOKEN = "1"
BARE_OFF_TOKEN = "0"

#: Extra tokens accepted per kind (keyed by ``DeviceKind.value``).
KIND_ON_TOKENS: dict[str, frozenset[str]] = {
    "entrance": frozenset({"OPEN"}),
    "smoke": frozenset({"ALARM"}),
}
KIND_OFF_TOKENS: dict[str, frozenset[str]] = {
    "entrance": frozenset({"CLOSED"}),
    "smoke": frozenset({"CLEAR"}),
}

#: Separator between an optional name prefix and the body (``"<name>: ON"``).
PREFIX_SEPARATOR = ":"

#: Marker introducing an optional revision suffix (``"ON @7"``).
REVISION_MARKER = "@"

# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------

#: Default colour per kind (keyed by ``DeviceKind.value``).
KIND_COLORS: dict[str, str] = {
    "lamp": "yellow",
    "entrance": "lightgreen",
    "temperature": "red",
    "humidity": "skyblue",
    "smoke": "orange",
}

#: Colour used while a device is on.
ACTIVE_COLOR = "green"

#: Colour for topics whose kind cannot be inferred.
UNKNOWN_COLOR = "black"

# ---------------------------------------------------------------------------
# Reference device table
# ---------------------------------------------------------------------------

#: ``(topic, qos, kind, display_name)`` for the reference house layout.
DEFAULT_DEVICES: list[tuple[str, int, str, str]] = [
    ("home/room1/lamp", 0, "lamp", "Lamp 1"),
    ("home/room2/lamp", 0, "lamp", "Lamp 2"),
    ("home/kitchen/lamp", 0, "lamp", "Kitchen Lamp"),
    ("home/livingroom/lamp", 0, "lamp", "Living Room Lamp"),
    ("home/foyer/lamp", 0, "lamp", "Foyer Lamp"),
    ("home/bathroom/lamp", 0, "lamp", "Bathroom Lamp"),
    ("home/foyer/entrance", 1, "entrance", "Foyer Entrance"),
    ("home/bathroom/humidity", 0, "humidity", "Bathroom Humidity Sensor"),
    ("home/livingroom/temperature", 0, "temperature", "Living Room Temperature Sensor"),
    ("home/kitchen/smoke", 1, "smoke", "Kitchen Smoke Detector"),
]


# ---------------------------------------------------------------------------
# Topic helper
# ---------------------------------------------------------------------------


class Topic:
    """
    Helper for building and decomposing ``home/{room}/{kind}`` topics.

    Example::

        Topic.build("kitchen", "lamp")          # "home/kitchen/lamp"
        Topic.room("home/kitchen/lamp")         # "kitchen"
        Topic.kind_for("home/kitchen/smoke")    # "smoke"
        Topic.color_for("home/garage/fan")      # "black"
    """

    @staticmethod
    def build(room: str, kind: str) -> str:
        """Build a device topic for *room* and *kind*."""
        return f"{TOPIC_PREFIX}/{room}/{kind}"

    @staticmethod
    def leaf(topic: str) -> str:
        """Return the leaf (last) component of a topic string."""
        return topic.rsplit("/", 1)[-1]

    @staticmethod
    def room(topic: str) -> str:
        """Return the room component, or ``""`` if the topic has no room level."""
        parts = topic.split("/")
        if len(parts) >= 3:
            return parts[-2]
        return ""

    @staticmethod
    def kind_for(topic: str) -> str | None:
        """Infer the ``DeviceKind`` value from the topic suffix, or ``None``."""
        for kind in KIND_COLORS:
            if topic.endswith(kind):
                return kind
        return None

    @staticmethod
    def color_for(topic: str) -> str:
        """Presentation colour implied by the topic suffix."""
        kind = Topic.kind_for(topic)
        return KIND_COLORS[kind] if kind else UNKNOWN_COLOR
