"""
homesync — keep local device state in sync with an MQTT broker.

Devices (lamps, entrances, sensors) change state from two independent
sources: a local control action and a remote message from the broker.
homesync keeps a single registry consistent across both without feedback
loops (our own publish echoing back is a no-op) and without broadcast
storms (remote changes are never re-published).

Quick start (async)::

    import asyncio
    from homesync import HomeSyncClient

    async def main():
        async with HomeSyncClient(broker="localhost") as client:
            client.subscribe(lambda rec: print(rec.display_name, rec.state))
            client.toggle("home/room1/lamp")
            async for record in client.watch():
                print(record.topic, record.state)

    asyncio.run(main())

Core only (bring your own transport)::

    from homesync import DeviceRegistry, StateSynchronizer, load_devices

    registry = DeviceRegistry(load_devices([("home/room1/lamp", 0, "lamp", "Lamp 1")]))
    sync = StateSynchronizer(registry, transport=my_transport)
    sync.on_local_toggle("home/room1/lamp")
    sync.on_remote_message("home/room1/lamp", b"home/room1/lamp: OFF")
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

from ._codec import DecodedPayload, decode, encode, parse_payload
from .client import HomeSyncClient
from .config import BrokerSettings, load_devices
from .const import DEFAULT_DEVICES, Topic
from .error_reporting import init_error_reporting
from .exceptions import (
    HomesyncError,
    HomesyncTimeoutError,
    MalformedPayloadError,
    ObserverError,
    TransportError,
    UnknownDeviceError,
)
from .fanout import NotificationFanout
from .models import (
    DeviceConfig,
    DeviceKind,
    DeviceRecord,
    Origin,
    QoS,
    SyncResult,
    UpsertResult,
)
from .registry import DeviceRegistry
from .sync import StateSynchronizer
from .transport import MqttTransport, Transport

__all__ = [  # noqa: RUF022 - grouped by category
    # Version
    "__version__",
    # Codec helpers
    "DecodedPayload",
    "decode",
    "encode",
    "parse_payload",
    # Configuration
    "BrokerSettings",
    "DEFAULT_DEVICES",
    "Topic",
    "load_devices",
    # Error reporting
    "init_error_reporting",
    # Models (alphabetical)
    "DeviceConfig",
    "DeviceKind",
    "DeviceRecord",
    "Origin",
    "QoS",
    "SyncResult",
    "UpsertResult",
    # Core
    "DeviceRegistry",
    "NotificationFanout",
    "StateSynchronizer",
    # Transport & client
    "HomeSyncClient",
    "MqttTransport",
    "Transport",
    # Exceptions (alphabetical)
    "HomesyncError",
    "HomesyncTimeoutError",
    "MalformedPayloadError",
    "ObserverError",
    "TransportError",
    "UnknownDeviceError",
]

# Opt-in error reporting: only active when HOMESYNC_SENTRY_DSN / SENTRY_DSN is set
init_error_reporting()
