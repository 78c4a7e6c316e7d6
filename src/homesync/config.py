"""
homesync.config — broker settings and device-list materialisation.

Neither helper parses a configuration file format: the broker settings come
from keyword arguments or ``HOMESYNC_*`` environment variables, and the
device list arrives already materialised as tuples, dicts or
:class:`~homesync.models.DeviceConfig` objects.

Environment variables read by :meth:`BrokerSettings.from_env`:

============================  =================================
``HOMESYNC_BROKER``           broker host (default ``localhost``)
``HOMESYNC_PORT``             broker port (default 1883)
``HOMESYNC_CLIENT_ID``        MQTT client id
``HOMESYNC_USERNAME``         broker username
``HOMESYNC_PASSWORD``         broker password
``HOMESYNC_TLS``              ``1``/``true``/``yes`` to enable TLS
``HOMESYNC_TLS_CA_CERTS``     CA bundle path for TLS
``HOMESYNC_CONNECT_TIMEOUT``  connect timeout in seconds
============================  =================================
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import TYPE_CHECKING, Any

from .const import (
    DEFAULT_BROKER,
    DEFAULT_CLIENT_ID,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_DEVICES,
    DEFAULT_PORT,
)
from .models import DeviceConfig

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass
class BrokerSettings:
    """Connection settings for :class:`~homesync.transport.MqttTransport`."""

    broker: str = DEFAULT_BROKER
    port: int = DEFAULT_PORT
    client_id: str = DEFAULT_CLIENT_ID
    username: str = ""
    password: str = ""
    tls: bool = False
    tls_ca_certs: str | None = None
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    def __repr__(self) -> str:
        # Never leak the password into logs or tracebacks.
        return (
            f"BrokerSettings(broker={self.broker!r}, port={self.port}, "
            f"client_id={self.client_id!r}, username={self.username!r}, "
            f"password={'***' if self.password else ''!r}, tls={self.tls})"
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BrokerSettings:
        """
        Build settings from ``HOMESYNC_*`` environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        return cls(
            broker=env.get("HOMESYNC_BROKER", DEFAULT_BROKER),
            port=int(env.get("HOMESYNC_PORT", DEFAULT_PORT)),
            client_id=env.get("HOMESYNC_CLIENT_ID", DEFAULT_CLIENT_ID),
            username=env.get("HOMESYNC_USERNAME", ""),
            password=env.get("HOMESYNC_PASSWORD", ""),
            tls=env.get("HOMESYNC_TLS", "").strip().lower() in _TRUTHY,
            tls_ca_certs=env.get("HOMESYNC_TLS_CA_CERTS") or None,
            connect_timeout=float(env.get("HOMESYNC_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT)),
        )

    def merged(self, **overrides: Any) -> BrokerSettings:
        """Return a copy with every non-``None`` override applied (e.g. from CLI flags)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return BrokerSettings(**{**self.__dict__, **values})


def load_devices(
    entries: Iterable[DeviceConfig | tuple[Any, ...] | dict[str, Any]] | None = None,
) -> list[DeviceConfig]:
    """
    Materialise a device list into :class:`DeviceConfig` objects.

    Args:
        entries: ``(topic, qos, kind, display_name)`` tuples, dicts with the
                 same keys, or ready ``DeviceConfig`` objects. Defaults to
                 :data:`~homesync.const.DEFAULT_DEVICES`.

    Returns:
        Configurations in input order.

    Raises:
        ValueError: On duplicate topics or unusable entries.
    """
    configs: list[DeviceConfig] = []
    seen: set[str] = set()
    for entry in DEFAULT_DEVICES if entries is None else entries:
        if isinstance(entry, DeviceConfig):
            config = entry
        elif isinstance(entry, dict):
            config = DeviceConfig.from_dict(entry)
        elif isinstance(entry, tuple | list):
            config = DeviceConfig.from_tuple(tuple(entry))
        else:
            raise ValueError(f"Unsupported device entry: {entry!r}")
        if config.topic in seen:
            raise ValueError(f"Duplicate device topic {config.topic!r}")
        seen.add(config.topic)
        configs.append(config)
    return configs
