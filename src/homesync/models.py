"""
homesync.models — Typed dataclasses and enums for devices and sync results.

All dataclasses use Python's ``dataclasses`` module; configuration objects
include ``from_dict`` / ``from_tuple`` factories for materialising the
device list handed to the registry at startup.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import enum
from typing import TYPE_CHECKING, Any

from .const import ACTIVE_COLOR, KIND_COLORS, Topic

if TYPE_CHECKING:
    from .exceptions import HomesyncError

#: A device state: boolean for actuators and binary sensors, numeric for sensor readings.
DeviceState = bool | float

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class QoS(enum.IntEnum):
    """MQTT delivery-quality level, fixed per device."""

    AT_MOST_ONCE = 0
    """Fire and forget; the broker may drop the message."""

    AT_LEAST_ONCE = 1
    """Acknowledged delivery; duplicates are possible."""

    EXACTLY_ONCE = 2
    """Four-step handshake; delivered exactly once."""


class DeviceKind(enum.Enum):
    """
    Category of a device.

    The value matches the last topic component used by the reference
    house layout (``home/<room>/<kind>``), see :meth:`Topic.kind_for`.
    """

    LAMP = "lamp"
    ENTRANCE = "entrance"
    TEMPERATURE_SENSOR = "temperature"
    HUMIDITY_SENSOR = "humidity"
    SMOKE_DETECTOR = "smoke"

    @property
    def color(self) -> str:
        """Default presentation colour name for this kind."""
        return KIND_COLORS[self.value]

    @property
    def is_sensor(self) -> bool:
        """True for kinds that may report a numeric reading instead of ON/OFF."""
        return self in (DeviceKind.TEMPERATURE_SENSOR, DeviceKind.HUMIDITY_SENSOR)


class Origin(enum.Enum):
    """Source of the most recent state change of a record."""

    INITIAL = "initial"
    LOCAL = "local"
    REMOTE = "remote"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeviceConfig:
    """
    Static configuration of one device, supplied at startup.

    Attributes:
        topic:        MQTT topic (unique key).
        qos:          Delivery-quality level for publish and subscribe.
        kind:         Device category.
        display_name: Human-readable name (e.g. ``"Kitchen Lamp"``).
        id:           Stable identifier; defaults to ``topic`` when empty.
    """

    topic: str
    qos: QoS = QoS.AT_MOST_ONCE
    kind: DeviceKind = DeviceKind.LAMP
    display_name: str = ""
    id: str = ""

    def __post_init__(self) -> None:
        if not self.topic:
            raise ValueError("DeviceConfig.topic must not be empty")
        # frozen dataclass: coerce through object.__setattr__
        object.__setattr__(self, "qos", QoS(self.qos))
        object.__setattr__(self, "kind", DeviceKind(self.kind))
        if not self.id:
            object.__setattr__(self, "id", self.topic)
        if not self.display_name:
            object.__setattr__(self, "display_name", self.topic)

    @classmethod
    def from_tuple(cls, entry: tuple[Any, ...]) -> DeviceConfig:
        """Build from a ``(topic, qos, kind, display_name)`` tuple."""
        topic, qos, kind, display_name = entry
        return cls(
            topic=topic, qos=QoS(int(qos)), kind=DeviceKind(kind), display_name=display_name
        )

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DeviceConfig:
        """
        Build from a dict as found in a JSON device list.

        ``kind`` may be omitted, in which case it is inferred from the topic.
        """
        topic = d.get("topic", "")
        kind = d.get("kind") or Topic.kind_for(topic)
        if kind is None:
            raise ValueError(f"Cannot infer device kind for topic {topic!r}")
        return cls(
            topic=topic,
            qos=QoS(int(d.get("qos", 0))),
            kind=DeviceKind(kind),
            display_name=d.get("display_name", d.get("name", "")),
            id=d.get("id", ""),
        )


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class DeviceRecord:
    """
    Current synchronised state of one device.

    Instances handed out by :class:`~homesync.registry.DeviceRegistry` are
    snapshots; mutating them has no effect on the registry.
    """

    id: str
    topic: str
    qos: QoS
    kind: DeviceKind
    display_name: str = ""
    state: DeviceState = False
    last_origin: Origin = Origin.INITIAL
    revision: int = 0
    updated_at: float | None = None
    """Epoch timestamp of the last accepted change (``None`` = never changed)."""

    @classmethod
    def from_config(cls, config: DeviceConfig) -> DeviceRecord:
        return cls(
            id=config.id,
            topic=config.topic,
            qos=config.qos,
            kind=config.kind,
            display_name=config.display_name,
        )

    @property
    def is_on(self) -> bool:
        """Truthiness of :attr:`state` (sensor readings count as ON when non-zero)."""
        return bool(self.state)

    @property
    def color(self) -> str:
        """Default presentation colour for this device's kind."""
        return self.kind.color

    @property
    def display_color(self) -> str:
        """Colour a renderer should use right now: green while on, kind colour otherwise."""
        return ACTIVE_COLOR if self.is_on else self.color

    def copy(self) -> DeviceRecord:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "qos": int(self.qos),
            "kind": self.kind.value,
            "display_name": self.display_name,
            "state": self.state,
            "last_origin": self.last_origin.value,
            "revision": self.revision,
            "updated_at": self.updated_at,
        }


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of :meth:`DeviceRegistry.upsert_state`."""

    changed: bool
    revision: int
    duplicate: bool = False
    """True when a remote revision marker was at or below the current revision."""


@dataclass
class SyncResult:
    """
    Outcome of one synchronizer entry point (local toggle or remote message).

    Errors are carried on the result rather than raised; ``ok`` is False
    whenever ``error`` is set.
    """

    topic: str
    origin: Origin
    changed: bool = False
    record: DeviceRecord | None = None
    published: bool = False
    notified: bool = False
    """True when the change was handed to the notification fan-out."""
    deferred: bool = False
    """
    True while another thread is still delivering an earlier change on the
    same topic. That thread notifies and publishes this change in order and
    fills in ``notified``/``published``/``error`` afterwards.
    """
    error: HomesyncError | None = None
    observer_errors: list[HomesyncError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None
