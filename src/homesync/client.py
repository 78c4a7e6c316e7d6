"""
homesync.client — HomeSyncClient: registry + synchronizer + MQTT in one object.

``HomeSyncClient`` is the primary entry point for most users. It owns a
:class:`~homesync.registry.DeviceRegistry`, a
:class:`~homesync.sync.StateSynchronizer` and a
:class:`~homesync.transport.MqttTransport`, and wires them together:

- on connect, every device topic is subscribed at its own QoS;
- inbound messages flow into the synchronizer on the paho thread;
- a dropped connection marks all states stale; a reconnect clears the flag
  and re-publishes any local change whose publish failed.

Usage::

    async with HomeSyncClient(broker="localhost") as client:
        client.subscribe(lambda rec: print(rec.display_name, rec.state))
        result = client.toggle("home/room1/lamp")
        async for record in client.watch():
            print(record.topic, record.state, record.last_origin)

    # Sync wrapper
    client = HomeSyncClient.connect_sync(broker="localhost")
    client.toggle("home/kitchen/lamp")
    client.disconnect()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import TYPE_CHECKING, Any

from .config import BrokerSettings, load_devices
from .fanout import NotificationFanout
from .registry import DeviceRegistry
from .sync import StateSynchronizer
from .transport import MqttTransport

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable
    from types import TracebackType

    from .models import DeviceConfig, DeviceRecord, SyncResult

logger = logging.getLogger(__name__)

#: Maximum number of undelivered changes buffered per :meth:`HomeSyncClient.watch` consumer.
WATCH_QUEUE_SIZE = 1000


class HomeSyncClient:
    """
    MQTT-backed device state synchronisation.

    Example (async context manager)::

        async with HomeSyncClient(broker="192.168.1.10") as client:
            client.toggle("home/foyer/lamp")

    Example (manual lifecycle)::

        client = HomeSyncClient(settings=BrokerSettings.from_env())
        await client.connect()
        client.toggle("home/foyer/lamp")
        await client.disconnect()

    Args:
        broker:   Broker host; overrides ``settings.broker`` when given.
        port:     Broker port; overrides ``settings.port`` when given.
        devices:  Device list (tuples, dicts or ``DeviceConfig``); defaults to
                  the reference house layout.
        settings: Full broker settings (credentials, TLS, timeouts).
        stamp_revisions: Append revision markers to outbound payloads.
    """

    def __init__(
        self,
        broker: str | None = None,
        port: int | None = None,
        devices: Iterable[DeviceConfig | tuple[Any, ...] | dict[str, Any]] | None = None,
        settings: BrokerSettings | None = None,
        stamp_revisions: bool = False,
    ) -> None:
        self._settings = (settings or BrokerSettings()).merged(broker=broker, port=port)
        if not self._settings.broker:
            raise ValueError("broker host must be set")
        self._registry = DeviceRegistry(load_devices(devices))
        self._fanout = NotificationFanout()
        self._transport = MqttTransport(
            broker=self._settings.broker,
            port=self._settings.port,
            client_id=self._settings.client_id,
            username=self._settings.username,
            password=self._settings.password,
            connect_timeout=self._settings.connect_timeout,
            tls=self._settings.tls,
            tls_ca_certs=self._settings.tls_ca_certs,
        )
        self._sync = StateSynchronizer(
            self._registry,
            self._transport,
            self._fanout,
            stamp_revisions=stamp_revisions,
        )

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> HomeSyncClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _on_reconnect(self) -> None:
        """Clear the stale flag and flush publishes that failed while offline."""
        still_pending = self._sync.on_reconnected()
        logger.info("Reconnected — %d publish(es) still pending", len(still_pending))

    async def connect(self) -> None:
        """Connect to the broker and subscribe every device topic."""
        self._transport.add_reconnect_callback(self._on_reconnect)
        # Recorded before connecting; the transport applies them in _on_connect.
        self._sync.subscribe_all()
        await self._transport.connect()
        logger.info(
            "HomeSyncClient connected to %s:%d (%d devices)",
            self._settings.broker,
            self._settings.port,
            len(self._registry),
        )

    async def disconnect(self) -> None:
        """Disconnect from the broker."""
        await self._transport.disconnect()

    @property
    def is_connected(self) -> bool:
        """True if the MQTT connection is active."""
        return self._transport.is_connected

    @property
    def is_stale(self) -> bool:
        """True while the connection is lost and states may be outdated."""
        return self._sync.is_stale

    @property
    def settings(self) -> BrokerSettings:
        return self._settings

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def synchronizer(self) -> StateSynchronizer:
        return self._sync

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def toggle(self, topic: str) -> SyncResult:
        """Flip *topic* locally and publish it; see :meth:`StateSynchronizer.on_local_toggle`."""
        return self._sync.on_local_toggle(topic)

    def get(self, topic: str) -> DeviceRecord | None:
        """Snapshot of one device, or ``None`` if the topic is unknown."""
        return self._registry.get(topic)

    def devices(self) -> list[DeviceRecord]:
        """Snapshot of every device, in configuration order."""
        return self._registry.snapshot()

    def subscribe(self, observer: Callable[[DeviceRecord], None]) -> Callable[[], None]:
        """Register a state-change observer; returns an unsubscribe function."""
        return self._fanout.subscribe(observer)

    def subscribe_stale(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Register a listener for stale-flag transitions; returns an unsubscribe function."""
        return self._fanout.subscribe_stale(listener)

    async def watch(self) -> AsyncIterator[DeviceRecord]:
        """
        Async generator yielding every accepted state change.

        Observers run on whichever thread produced the change (the paho
        thread for remote messages); records are bridged onto the running
        loop with ``call_soon_threadsafe`` into a bounded queue that drops
        the oldest entry when a slow consumer falls behind.

        Example::

            async for record in client.watch():
                print(f"{record.display_name}: {record.state}")
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[DeviceRecord] = asyncio.Queue(maxsize=WATCH_QUEUE_SIZE)

        def _observer(record: DeviceRecord) -> None:
            loop.call_soon_threadsafe(_enqueue_safe, queue, record)

        unsubscribe = self._fanout.subscribe(_observer)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    # ------------------------------------------------------------------
    # Sync wrapper
    # ------------------------------------------------------------------

    @classmethod
    def connect_sync(
        cls,
        broker: str | None = None,
        port: int | None = None,
        devices: Iterable[DeviceConfig | tuple[Any, ...] | dict[str, Any]] | None = None,
        settings: BrokerSettings | None = None,
    ) -> _SyncHomeSyncClient:
        """
        Create a synchronous wrapper around ``HomeSyncClient``.

        Useful for scripts and REPL sessions that don't use asyncio.

        Example::

            client = HomeSyncClient.connect_sync(broker="localhost")
            client.toggle("home/room1/lamp")
            client.disconnect()
        """
        return _SyncHomeSyncClient(broker=broker, port=port, devices=devices, settings=settings)


def _enqueue_safe(q: asyncio.Queue[DeviceRecord], record: DeviceRecord) -> None:
    """Enqueue *record*, dropping the oldest item if the queue is full (runs on the loop)."""
    if q.full():
        with contextlib.suppress(asyncio.QueueEmpty):
            q.get_nowait()
    with contextlib.suppress(asyncio.QueueFull):
        q.put_nowait(record)


class _SyncHomeSyncClient:
    """
    Synchronous wrapper around :class:`HomeSyncClient`.

    The wrapped client lives on a private event loop that runs in a daemon
    thread for the wrapper's whole lifetime, so reconnect handling (stale
    flag reset, retry of failed publishes) happens without the caller
    calling back into the wrapper.
    """

    def __init__(
        self,
        broker: str | None,
        port: int | None,
        devices: Iterable[DeviceConfig | tuple[Any, ...] | dict[str, Any]] | None,
        settings: BrokerSettings | None,
    ) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="homesync-loop", daemon=True
        )
        self._thread.start()
        self._client = HomeSyncClient(broker=broker, port=port, devices=devices, settings=settings)
        try:
            self._run(self._client.connect())
        except BaseException:
            self._stop_loop()
            raise

    def _run(self, coro: Any) -> Any:
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()

    @property
    def is_stale(self) -> bool:
        return self._client.is_stale

    def toggle(self, topic: str) -> SyncResult:
        """Flip a device and publish the new state."""
        return self._client.toggle(topic)

    def get(self, topic: str) -> DeviceRecord | None:
        """Snapshot of one device."""
        return self._client.get(topic)

    def devices(self) -> list[DeviceRecord]:
        """Snapshot of every device."""
        return self._client.devices()

    def subscribe(self, observer: Callable[[DeviceRecord], None]) -> Callable[[], None]:
        """Register a state-change observer (called on the paho thread)."""
        return self._client.subscribe(observer)

    def disconnect(self) -> None:
        """Disconnect from the broker and stop the private event loop."""
        try:
            self._run(self._client.disconnect())
        finally:
            self._stop_loop()
