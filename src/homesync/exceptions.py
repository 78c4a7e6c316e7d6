"""
homesync.exceptions — Custom exception hierarchy for python-homesync.

All exceptions raised by the library are subclasses of ``HomesyncError``,
so callers can catch everything with a single ``except HomesyncError``.

None of these errors is fatal to the process: the synchronizer records them
on the :class:`~homesync.models.SyncResult` it returns and carries on.

Hierarchy::

    HomesyncError
    ├── UnknownDeviceError         # Topic is not in the registry
    ├── MalformedPayloadError      # Payload does not match the device grammar
    ├── TransportError             # Publish / subscribe / connect failed
    │   └── HomesyncTimeoutError   # Broker did not answer in time
    └── ObserverError              # An observer callback raised
"""

from __future__ import annotations


class HomesyncError(Exception):
    """Base class for all python-homesync exceptions."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class UnknownDeviceError(HomesyncError):
    """
    The topic is not present in the device registry.

    Attributes:
        topic: The unrecognised topic string.
    """

    def __init__(self, topic: str) -> None:
        super().__init__(f"Unknown device topic {topic!r}")
        self.topic = topic


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class MalformedPayloadError(HomesyncError):
    """
    A payload could not be decoded for the target device.

    Attributes:
        topic:   Topic the payload arrived on (empty when unknown).
        payload: The offending raw bytes (truncated to 256 bytes).
    """

    def __init__(self, message: str, topic: str = "", payload: bytes = b"") -> None:
        super().__init__(message)
        self.topic = topic
        self.payload = payload[:256]


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportError(HomesyncError):
    """
    Publishing, subscribing or connecting to the MQTT broker failed.

    Raised when the broker cannot be reached, when the client is not
    connected, or when paho rejects a publish/subscribe request.
    """


class HomesyncTimeoutError(TransportError):
    """The broker did not acknowledge the connection within the timeout."""


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


class ObserverError(HomesyncError):
    """
    An observer callback raised while being notified of a state change.

    The original exception is available as ``__cause__`` and ``original``.
    """

    def __init__(self, observer: object, original: BaseException) -> None:
        name = getattr(observer, "__qualname__", None) or repr(observer)
        super().__init__(f"Observer {name} failed: {original!r}")
        self.observer = observer
        self.original = original
