"""
homesync.transport — MQTT transport adapter for the synchronizer.

Defines the narrow :class:`Transport` capability the core consumes
(``publish``, ``subscribe``, an inbound-message sink and a connection-lost
notification) and :class:`MqttTransport`, its ``paho-mqtt`` implementation.

Threading notes:
- paho runs its network loop on its own thread (``loop_start``). Inbound
  messages are handed to the message handler **on that thread**; the
  synchronizer is thread-safe, so no hop to asyncio is needed.
- ``connect()`` / ``disconnect()`` are coroutines: the connection handshake
  is awaited on the asyncio loop via ``loop.call_soon_threadsafe``.
- ``publish()`` is fire-and-forget: paho queues the message and returns
  immediately whatever the QoS; we check the return code only.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol

from .const import (
    DEFAULT_CLIENT_ID,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_PORT,
    MQTT_KEEPALIVE,
)
from .exceptions import HomesyncTimeoutError, TransportError

if TYPE_CHECKING:
    from collections.abc import Callable

    import paho.mqtt.client as _paho

    MessageHandler = Callable[[str, bytes], Any]

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Publish/subscribe capability consumed by :class:`~homesync.sync.StateSynchronizer`."""

    def publish(self, topic: str, payload: bytes, qos: int) -> None:
        """Queue *payload* on *topic*; raise :class:`TransportError` on failure."""

    def subscribe(self, topic: str, qos: int) -> None:
        """Subscribe to *topic*; raise :class:`TransportError` on failure."""

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        """Set the callable invoked as ``handler(topic, payload)`` for inbound messages."""

    def add_connection_lost_callback(self, callback: Callable[[object], None]) -> None:
        """Register ``callback(cause)`` for unexpected disconnects."""


class MqttTransport:
    """
    ``paho-mqtt`` v2 implementation of :class:`Transport`.

    Subscriptions are remembered and re-applied on every (re)connect, so a
    broker restart does not silently drop inbound state.

    Example::

        transport = MqttTransport(broker="localhost", client_id="IoTAppClient")
        transport.set_message_handler(sync.on_remote_message)
        await transport.connect()
        transport.subscribe("home/room1/lamp", 0)
        transport.publish("home/room1/lamp", b"home/room1/lamp: ON", 0)
        await transport.disconnect()
    """

    def __init__(
        self,
        broker: str,
        port: int = DEFAULT_PORT,
        client_id: str = DEFAULT_CLIENT_ID,
        username: str = "",
        password: str = "",
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        tls: bool = False,
        tls_ca_certs: str | None = None,
    ) -> None:
        self._broker = broker
        self._port = port
        self._client_id = client_id
        self._username = username
        self._password = password
        self._connect_timeout = connect_timeout
        self._tls = tls
        self._tls_ca_certs = tls_ca_certs

        # paho Client, typed via the TYPE_CHECKING import
        self._client: _paho.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connected = asyncio.Event()
        # Set from the paho thread; read from any thread.
        self._online = threading.Event()
        self._subscriptions: dict[str, int] = {}
        self._subscriptions_lock = threading.Lock()
        self._message_handler: MessageHandler | None = None
        self._connection_lost_callbacks: list[Callable[[object], None]] = []
        # True after the first disconnect: the next _on_connect is a reconnect
        self._was_connected: bool = False
        self._closing: bool = False
        self._reconnect_callbacks: list[Callable[[], None]] = []

    @property
    def broker(self) -> str:
        return self._broker

    @property
    def is_connected(self) -> bool:
        """True if the MQTT connection is established."""
        return self._online.is_set()

    @property
    def subscriptions(self) -> dict[str, int]:
        """Topic → QoS of every active subscription."""
        with self._subscriptions_lock:
            return dict(self._subscriptions)

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        self._message_handler = handler

    def add_connection_lost_callback(self, callback: Callable[[object], None]) -> None:
        """Register ``callback(cause)`` for unexpected disconnects (paho thread)."""
        if callback not in self._connection_lost_callbacks:
            self._connection_lost_callbacks.append(callback)

    def add_reconnect_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback to be invoked on the asyncio loop after a reconnect.

        A *reconnect* is any successful ``_on_connect`` that happens after the
        transport has previously been disconnected (i.e. not the initial connect).
        Duplicate callbacks are silently ignored.
        """
        if callback not in self._reconnect_callbacks:
            self._reconnect_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Connect to the MQTT broker and re-apply remembered subscriptions.

        Raises:
            TransportError:       If paho-mqtt is missing or the broker is unreachable.
            HomesyncTimeoutError: If the broker does not respond within timeout.
        """
        try:
            import paho.mqtt.client as mqtt  # noqa: PLC0415
        except ImportError as exc:
            raise TransportError("paho-mqtt is required: pip install paho-mqtt") from exc

        self._loop = asyncio.get_running_loop()
        self._connected.clear()
        self._closing = False

        self._client = mqtt.Client(
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,  # type: ignore[attr-defined]
        )
        if self._username:
            self._client.username_pw_set(self._username, self._password)

        if self._tls:
            import ssl  # noqa: PLC0415

            self._client.tls_set(
                ca_certs=self._tls_ca_certs,
                cert_reqs=ssl.CERT_REQUIRED if self._tls_ca_certs else ssl.CERT_NONE,
            )

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        try:
            self._client.connect(self._broker, self._port, keepalive=MQTT_KEEPALIVE)
        except OSError as exc:
            raise TransportError(
                f"Cannot connect to MQTT broker {self._broker}:{self._port}: {exc}"
            ) from exc

        self._client.loop_start()

        try:
            await asyncio.wait_for(self._connected.wait(), timeout=self._connect_timeout)
        except TimeoutError as exc:
            # loop_stop joins the paho thread; run it off-loop.
            await asyncio.get_running_loop().run_in_executor(None, self._client.loop_stop)
            raise HomesyncTimeoutError(
                f"Timed out waiting for MQTT connection to {self._broker}:{self._port}"
            ) from exc

        logger.info(
            "MQTT connected to %s:%d (client_id=%s)", self._broker, self._port, self._client_id
        )

    async def disconnect(self) -> None:
        """
        Cleanly disconnect from the MQTT broker.

        Sends an MQTT DISCONNECT first, then stops the paho network thread
        from a thread-pool executor so the asyncio loop is never blocked.
        """
        if self._client:
            self._closing = True
            self._client.disconnect()
            await asyncio.get_running_loop().run_in_executor(None, self._client.loop_stop)
            self._connected.clear()
            self._online.clear()
            logger.info("MQTT disconnected from %s", self._broker)

    # ------------------------------------------------------------------
    # Publish / subscribe
    # ------------------------------------------------------------------

    def publish(self, topic: str, payload: bytes, qos: int) -> None:
        """
        Queue *payload* for delivery on *topic* with the given QoS.

        Does not wait for broker acknowledgement, even at QoS 1/2.

        Raises:
            TransportError: If not connected or paho rejects the message.
        """
        if self._client is None or not self.is_connected:
            raise TransportError(f"Not connected to MQTT broker; cannot publish to {topic}")
        try:
            info = self._client.publish(topic, payload, qos=qos)
        except (ValueError, OSError) as exc:
            raise TransportError(f"Publish to {topic} failed: {exc}") from exc
        rc = getattr(info, "rc", 0)
        if rc != 0:
            raise TransportError(f"Publish to {topic} failed rc={rc}")
        logger.debug("→ MQTT [%s] qos=%d %s", topic, qos, payload[:160])

    def subscribe(self, topic: str, qos: int) -> None:
        """
        Subscribe to *topic* and remember it for reconnects.

        When called before :meth:`connect`, the subscription is only
        recorded and is applied once the connection is up.

        Raises:
            TransportError: If paho rejects the subscription.
        """
        with self._subscriptions_lock:
            self._subscriptions[topic] = qos
        if self._client is None or not self.is_connected:
            logger.debug("Deferred subscription: %s (qos=%d)", topic, qos)
            return
        try:
            result, _mid = self._client.subscribe(topic, qos=qos)
        except ValueError as exc:
            raise TransportError(f"Subscribe to {topic} failed: {exc}") from exc
        if result != 0:
            raise TransportError(f"Subscribe to {topic} failed rc={result}")
        logger.debug("Subscribed: %s (qos=%d)", topic, qos)

    # ------------------------------------------------------------------
    # paho-mqtt callbacks (called from the paho thread)
    # ------------------------------------------------------------------

    def _on_connect(
        self,
        client: Any,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        props: Any,
    ) -> None:
        """
        paho-mqtt v2 on_connect callback.

        ``reason_code`` is a ``ReasonCode`` object under paho v2;
        ``getattr(..., "value", ...)`` normalises it to an ``int``.
        """
        rc = getattr(reason_code, "value", reason_code)
        if rc != 0:
            logger.error("MQTT connect failed rc=%s", rc)
            return
        is_reconnect = self._was_connected
        for topic, qos in self.subscriptions.items():
            client.subscribe(topic, qos=qos)
            logger.debug("Subscribed: %s (qos=%d)", topic, qos)
        self._online.set()
        if self._loop:
            self._loop.call_soon_threadsafe(self._connected.set)
            if is_reconnect:
                logger.info("MQTT reconnected — re-subscribed %d topics", len(self._subscriptions))
                for cb in list(self._reconnect_callbacks):
                    self._loop.call_soon_threadsafe(cb)

    def _on_disconnect(
        self,
        client: Any,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        props: Any,
    ) -> None:
        """paho-mqtt v2 on_disconnect callback."""
        rc = getattr(reason_code, "value", reason_code)
        self._was_connected = True  # next _on_connect is a reconnect
        self._online.clear()
        if self._loop:
            self._loop.call_soon_threadsafe(self._connected.clear)
        if self._closing:
            return
        logger.warning("MQTT connection lost rc=%s", rc)
        for cb in list(self._connection_lost_callbacks):
            try:
                cb(reason_code)
            except Exception:  # noqa: BLE001
                logger.exception("Connection-lost callback failed")

    def _on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        """
        paho-mqtt on_message callback.

        Hands ``(topic, payload)`` to the message handler on the paho thread.
        """
        logger.debug("← MQTT [%s] %s", msg.topic, bytes(msg.payload)[:160])
        handler = self._message_handler
        if handler is None:
            return
        try:
            handler(msg.topic, bytes(msg.payload))
        except Exception as exc:  # noqa: BLE001
            logger.error("Error handling MQTT message on %s: %s", getattr(msg, "topic", "?"), exc)
