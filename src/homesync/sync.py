"""
homesync.sync — StateSynchronizer: reconcile local intents and broker messages.

The synchronizer is the only writer of device state. It has two entry
points, which may be called concurrently from different threads:

* :meth:`StateSynchronizer.on_local_toggle`: a user flipped a device. The
  registry is updated optimistically, observers are notified, and the new
  state is published with the device's QoS. This is the **only** path that
  originates an outbound publish.
* :meth:`StateSynchronizer.on_remote_message`: the broker delivered a
  payload. It is decoded and reconciled against the registry. Observers are
  notified of genuine changes, but nothing is ever re-published.

Feedback suppression
~~~~~~~~~~~~~~~~~~~~
Brokers loop a publisher's own traffic back to it when it is also
subscribed. That echo carries the state we already hold, so
:meth:`DeviceRegistry.upsert_state` reports ``changed=False`` and the
message collapses to a no-op: no notification and no publish. Revision
markers, when a publisher sends them, additionally discard stale and
duplicate deliveries under QoS 1/2.

Concurrency
~~~~~~~~~~~
The per-topic registry lock covers only read, upsert and queueing of the
committed record. Notification and publish run after the lock is released,
so an observer may toggle any device from any thread. Changes on one topic
are still notified and published in revision order: a single thread drains
each topic's queue, and a caller that finds a drain in progress leaves its
change to that thread (``SyncResult.deferred``).

Errors never escape either entry point; they are logged, reported and
returned on the :class:`~homesync.models.SyncResult`.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import TYPE_CHECKING, NamedTuple

from ._codec import encode, parse_payload
from .error_reporting import report_exception
from .exceptions import MalformedPayloadError, TransportError, UnknownDeviceError
from .fanout import NotificationFanout
from .models import DeviceRecord, Origin, SyncResult

if TYPE_CHECKING:
    from .registry import DeviceRegistry
    from .transport import Transport

logger = logging.getLogger(__name__)


class _Delivery(NamedTuple):
    record: DeviceRecord
    result: SyncResult
    notify: bool
    publish: bool


class StateSynchronizer:
    """
    Applies local toggles and remote messages to a :class:`DeviceRegistry`.

    Example::

        registry = DeviceRegistry(load_devices(DEFAULT_DEVICES))
        sync = StateSynchronizer(registry)
        sync.attach(transport)          # wires inbound messages + connection loss
        sync.subscribe_all()            # subscribe every device topic at its QoS
        result = sync.on_local_toggle("home/room1/lamp")
        assert result.record.state is True and result.published

    Args:
        registry:        The device table to keep in sync.
        transport:       Publish/subscribe capability; may be attached later.
        fanout:          Observer list; a fresh one is created if omitted.
        stamp_revisions: Append the record revision (``" @<n>"``) to outbound
                         payloads. Only useful when every publisher on the
                         topics shares the same revision sequence.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        transport: Transport | None = None,
        fanout: NotificationFanout | None = None,
        stamp_revisions: bool = False,
    ) -> None:
        self._registry = registry
        self._transport: Transport | None = None
        self._fanout = fanout if fanout is not None else NotificationFanout()
        self._stamp_revisions = stamp_revisions
        # Topics whose last publish failed, in failure order (dict as ordered set).
        self._pending: dict[str, None] = {}
        self._pending_lock = threading.Lock()
        # Committed changes awaiting notify/publish, per topic in revision order.
        self._outbox: dict[str, deque[_Delivery]] = {}
        self._draining: set[str] = set()
        self._outbox_lock = threading.Lock()
        if transport is not None:
            self.attach(transport)

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def fanout(self) -> NotificationFanout:
        return self._fanout

    @property
    def is_stale(self) -> bool:
        """True while the broker connection is lost (see :meth:`on_connection_lost`)."""
        return self._fanout.is_stale

    @property
    def pending(self) -> list[str]:
        """Topics whose latest local state has not been published yet."""
        with self._pending_lock:
            return list(self._pending)

    # ------------------------------------------------------------------
    # Transport wiring
    # ------------------------------------------------------------------

    def attach(self, transport: Transport) -> None:
        """Route *transport*'s inbound messages and connection loss to this synchronizer."""
        self._transport = transport
        transport.set_message_handler(self.on_remote_message)
        transport.add_connection_lost_callback(self.on_connection_lost)

    def subscribe_all(self) -> list[str]:
        """
        Subscribe every registered topic at its device QoS.

        Returns:
            Topics whose subscription failed (logged, not raised).
        """
        if self._transport is None:
            raise TransportError("No transport attached")
        failed: list[str] = []
        for record in self._registry.snapshot():
            try:
                self._transport.subscribe(record.topic, int(record.qos))
            except TransportError as exc:
                logger.error("Subscribe to %s failed: %s", record.topic, exc)
                failed.append(record.topic)
        return failed

    # ------------------------------------------------------------------
    # Local intents
    # ------------------------------------------------------------------

    def on_local_toggle(self, topic: str) -> SyncResult:
        """
        Flip the state of *topic* and publish it.

        The registry update and the observer notification happen before the
        publish. A failed publish does not roll the state back; the topic is
        queued for :meth:`retry_pending` and the error is returned on the result.

        Returns:
            :class:`~homesync.models.SyncResult`; ``error`` is an
            :class:`UnknownDeviceError` for unregistered topics or a
            :class:`TransportError` when the publish failed.
        """
        result = SyncResult(topic=topic, origin=Origin.LOCAL)
        try:
            with self._registry.locked(topic):
                current = self._registry.get(topic)
                if current is None:
                    raise UnknownDeviceError(topic)
                upsert = self._registry.upsert_state(topic, not current.state, Origin.LOCAL)
                result.changed = upsert.changed
                result.record = self._registry.get(topic)
                if upsert.changed and result.record is not None:
                    self._enqueue(result.record, result, notify=True, publish=True)
        except UnknownDeviceError as exc:
            logger.warning("Toggle ignored for unknown device %s", topic)
            result.error = exc
            return result
        if result.changed:
            self._drain(topic)
        return result

    def retry_pending(self) -> list[str]:
        """
        Re-publish the current state of every topic whose publish failed.

        Returns:
            Topics that are still pending after the retry.
        """
        for topic in self.pending:
            with self._registry.locked(topic):
                record = self._registry.get(topic)
                if record is None:
                    continue
                retry = SyncResult(topic=topic, origin=Origin.LOCAL, record=record)
                self._enqueue(record, retry, notify=False, publish=True)
            self._drain(topic)
        remaining = self.pending
        if remaining:
            logger.warning("%d publish(es) still pending: %s", len(remaining), remaining)
        return remaining

    # ------------------------------------------------------------------
    # Remote messages
    # ------------------------------------------------------------------

    def on_remote_message(self, topic: str, payload: bytes) -> SyncResult:
        """
        Reconcile a broker message with the registry.

        Unknown topics and malformed payloads are logged and discarded
        without touching the registry. A payload equal to the current state
        (typically the echo of our own publish) is a no-op. A genuine change
        is applied and observers are notified; it is never re-published.
        """
        result = SyncResult(topic=topic, origin=Origin.REMOTE)
        device = self._registry.get(topic)
        if device is None:
            logger.debug("Ignoring message on unknown topic %s", topic)
            result.error = UnknownDeviceError(topic)
            return result
        try:
            decoded = parse_payload(device, payload)
        except MalformedPayloadError as exc:
            logger.warning("Discarding malformed payload on %s: %s", topic, exc)
            result.error = exc
            return result

        with self._registry.locked(topic):
            upsert = self._registry.upsert_state(
                topic, decoded.state, Origin.REMOTE, decoded.revision
            )
            result.changed = upsert.changed
            result.record = self._registry.get(topic)
            if upsert.changed and result.record is not None:
                logger.info(
                    "Remote change %s -> %s (revision %d)",
                    topic,
                    result.record.state,
                    result.record.revision,
                )
                # The broker is authoritative for external changes; an unsent
                # local intent on this topic is superseded.
                self._discard_pending(topic)
                self._enqueue(result.record, result, notify=True, publish=False)
        if result.changed:
            self._drain(topic)
        return result

    def on_connection_lost(self, cause: object = None) -> None:
        """Flag all states as stale; records themselves are left untouched."""
        self._fanout.set_stale(True, str(cause) if cause is not None else None)

    def on_reconnected(self) -> list[str]:
        """Clear the stale flag and retry failed publishes; returns topics still pending."""
        self._fanout.set_stale(False)
        return self.retry_pending()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _enqueue(
        self, record: DeviceRecord, result: SyncResult, *, notify: bool, publish: bool
    ) -> None:
        """Queue a committed change. Called under the topic lock: queue order is revision order."""
        result.deferred = True
        with self._outbox_lock:
            self._outbox.setdefault(record.topic, deque()).append(
                _Delivery(record, result, notify, publish)
            )

    def _drain(self, topic: str) -> None:
        """
        Notify and publish queued changes for *topic* in commit order.

        Runs without any registry lock held, so observers may toggle other
        devices from any thread. Only one thread drains a topic at a time;
        a caller that finds the topic already draining returns at once and
        its change is delivered by the draining thread.
        """
        while True:
            with self._outbox_lock:
                queue = self._outbox.get(topic)
                if topic in self._draining or not queue:
                    return
                self._draining.add(topic)
                item = queue.popleft()
            try:
                item.result.deferred = False
                if item.notify:
                    self._deliver(item.record, item.result)
                if item.publish:
                    self._publish(item.record, item.result)
            finally:
                with self._outbox_lock:
                    self._draining.discard(topic)

    def _deliver(self, record: DeviceRecord, result: SyncResult) -> None:
        result.observer_errors = list(self._fanout.notify(record))
        result.notified = True

    def _publish(self, record: DeviceRecord, result: SyncResult) -> None:
        """Encode and publish *record*; failures are recorded on *result*."""
        revision = record.revision if self._stamp_revisions else None
        try:
            payload = encode(record, record.state, revision)
        except MalformedPayloadError as exc:
            logger.error("Cannot encode state for %s: %s", record.topic, exc)
            result.error = exc
            return
        try:
            if self._transport is None:
                raise TransportError("No transport attached")
            self._transport.publish(record.topic, payload, int(record.qos))
        except TransportError as exc:
            logger.error("Publish to %s failed, keeping local state: %s", record.topic, exc)
            report_exception(exc, topic=record.topic, qos=int(record.qos))
            with self._pending_lock:
                self._pending[record.topic] = None
            result.error = exc
            return
        self._discard_pending(record.topic)
        result.published = True

    def _discard_pending(self, topic: str) -> None:
        with self._pending_lock:
            self._pending.pop(topic, None)
