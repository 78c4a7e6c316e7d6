"""
homesync.fanout — NotificationFanout: deliver state changes to observers.

Observers are plain callables taking a :class:`~homesync.models.DeviceRecord`
snapshot. They run synchronously, in subscription order, once per accepted
state change regardless of its origin. A raising observer is isolated: the
error is logged and reported, and the remaining observers still run.

The fan-out also owns the process-wide *stale* indicator, set when the
broker connection is lost and cleared on reconnect. Stale listeners are
notified with the new flag value and are isolated the same way.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import TYPE_CHECKING

from .error_reporting import report_exception
from .exceptions import ObserverError

if TYPE_CHECKING:
    from collections.abc import Callable

    from .models import DeviceRecord

    Observer = Callable[[DeviceRecord], None]
    StaleListener = Callable[[bool], None]

logger = logging.getLogger(__name__)


class NotificationFanout:
    """
    Ordered, failure-isolated observer list.

    Example::

        fanout = NotificationFanout()
        unsubscribe = fanout.subscribe(lambda rec: print(rec.topic, rec.state))
        fanout.notify(record)
        unsubscribe()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: list[Observer] = []
        self._stale_listeners: list[StaleListener] = []
        self._stale = False
        self._stale_cause: str | None = None

    # ------------------------------------------------------------------
    # State-change observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Register *observer*; returns a function that unregisters it.

        The same callable may be registered more than once and is then
        invoked once per registration.
        """
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                with contextlib.suppress(ValueError):
                    self._observers.remove(observer)

        return unsubscribe

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def notify(self, record: DeviceRecord) -> list[ObserverError]:
        """
        Invoke every observer with *record*.

        Each observer receives its own copy, so one observer mutating the
        snapshot cannot affect what the next one sees.

        Returns:
            One :class:`~homesync.exceptions.ObserverError` per observer that raised.
        """
        with self._lock:
            observers = list(self._observers)
        errors: list[ObserverError] = []
        for observer in observers:
            try:
                observer(record.copy())
            except Exception as exc:  # noqa: BLE001
                error = ObserverError(observer, exc)
                error.__cause__ = exc
                logger.exception("Observer failed for %s", record.topic)
                report_exception(error, topic=record.topic, revision=record.revision)
                errors.append(error)
        return errors

    # ------------------------------------------------------------------
    # Stale indicator
    # ------------------------------------------------------------------

    @property
    def is_stale(self) -> bool:
        """True while the broker connection is lost and states may be outdated."""
        return self._stale

    @property
    def stale_cause(self) -> str | None:
        """Description of what made the state stale, if any."""
        return self._stale_cause

    def subscribe_stale(self, listener: StaleListener) -> Callable[[], None]:
        """Register a listener for stale-flag transitions; returns an unsubscribe function."""
        with self._lock:
            self._stale_listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                with contextlib.suppress(ValueError):
                    self._stale_listeners.remove(listener)

        return unsubscribe

    def set_stale(self, stale: bool, cause: str | None = None) -> bool:
        """
        Set the stale flag; listeners run only on an actual transition.

        Returns:
            True if the flag changed.
        """
        with self._lock:
            if self._stale == stale:
                return False
            self._stale = stale
            self._stale_cause = cause if stale else None
            listeners = list(self._stale_listeners)
        if stale:
            logger.warning("Device states marked stale: %s", cause or "connection lost")
        else:
            logger.info("Device states no longer stale")
        for listener in listeners:
            try:
                listener(stale)
            except Exception as exc:  # noqa: BLE001
                error = ObserverError(listener, exc)
                error.__cause__ = exc
                logger.exception("Stale listener failed")
                report_exception(error, stale=stale)
        return True
