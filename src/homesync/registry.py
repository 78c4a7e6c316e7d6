"""
homesync.registry — DeviceRegistry: the authoritative in-memory device table.

One :class:`~homesync.models.DeviceRecord` per topic, created once from the
startup configuration and mutated in place for the life of the process.

Concurrency
~~~~~~~~~~~
Local intents (UI / asyncio thread) and remote deliveries (paho network
thread) mutate records concurrently. Each record carries its own
``threading.RLock``; the topic map is built once and never resized, so
lookups need no global lock and unrelated topics never contend.

Callers only ever receive copies of records; the internal table is never
exposed for mutation.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import TYPE_CHECKING

from .exceptions import UnknownDeviceError
from .models import DeviceConfig, DeviceRecord, Origin, UpsertResult

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from .models import DeviceState

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """
    Thread-safe table of device records keyed by topic.

    Example::

        registry = DeviceRegistry.from_configs(load_devices(DEFAULT_DEVICES))
        result = registry.upsert_state("home/room1/lamp", True, Origin.LOCAL)
        assert result.changed and result.revision == 1
        registry.upsert_state("home/room1/lamp", True, Origin.REMOTE).changed  # False

    Args:
        configs: Device configurations, in presentation order.

    Raises:
        ValueError: If two configurations share a topic.
    """

    def __init__(self, configs: Iterable[DeviceConfig]) -> None:
        self._records: dict[str, DeviceRecord] = {}
        self._locks: dict[str, threading.RLock] = {}
        for config in configs:
            if config.topic in self._records:
                raise ValueError(f"Duplicate device topic {config.topic!r}")
            self._records[config.topic] = DeviceRecord.from_config(config)
            self._locks[config.topic] = threading.RLock()
        logger.debug("Registry initialised with %d devices", len(self._records))

    @classmethod
    def from_configs(cls, configs: Iterable[DeviceConfig]) -> DeviceRegistry:
        return cls(configs)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, topic: object) -> bool:
        return topic in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self.topics())

    def topics(self) -> list[str]:
        """All registered topics, in configuration order."""
        return list(self._records)

    def get(self, topic: str) -> DeviceRecord | None:
        """
        Return a snapshot of the record for *topic*, or ``None`` if unknown.

        An unknown topic is not an error; callers decide whether to ignore it.
        """
        lock = self._locks.get(topic)
        if lock is None:
            return None
        with lock:
            return self._records[topic].copy()

    def snapshot(self) -> list[DeviceRecord]:
        """
        Copies of every record, in configuration order.

        Each record is copied under its own lock, so every entry is
        internally consistent; the list as a whole is not a single atomic
        cut across topics.
        """
        result = []
        for topic, record in self._records.items():
            with self._locks[topic]:
                result.append(record.copy())
        return result

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    @contextmanager
    def locked(self, topic: str) -> Iterator[None]:
        """
        Hold the per-topic lock for a read-compute-write sequence.

        The lock is re-entrant, so :meth:`get` and :meth:`upsert_state` may
        be called while it is held.

        Raises:
            UnknownDeviceError: If *topic* is not registered.
        """
        lock = self._locks.get(topic)
        if lock is None:
            raise UnknownDeviceError(topic)
        with lock:
            yield

    def upsert_state(
        self,
        topic: str,
        new_state: DeviceState,
        origin: Origin,
        revision: int | None = None,
    ) -> UpsertResult:
        """
        Apply *new_state* to *topic* if it differs from the current state.

        If the state differs, ``state``, ``last_origin`` and ``updated_at``
        are updated and ``revision`` advances. An identical state is an
        idempotent no-op that leaves ``revision`` untouched; this is what
        collapses an echo of our own publish.

        Args:
            topic:     Device topic.
            new_state: Candidate state.
            origin:    Source of the change.
            revision:  Revision marker carried by a remote payload, if any.
                       A marker at or below the current revision marks the
                       update as a duplicate and it is discarded. An
                       accepted marker above ``current + 1`` is adopted
                       as the new revision.

        Returns:
            :class:`~homesync.models.UpsertResult`.

        Raises:
            UnknownDeviceError: If *topic* is not registered.
        """
        with self.locked(topic):
            record = self._records[topic]
            if revision is not None and revision <= record.revision:
                logger.debug(
                    "Discarding duplicate for %s (revision %d <= %d)",
                    topic,
                    revision,
                    record.revision,
                )
                return UpsertResult(changed=False, revision=record.revision, duplicate=True)
            if _same_state(record.state, new_state):
                return UpsertResult(changed=False, revision=record.revision)
            record.state = new_state
            record.last_origin = origin
            record.revision = max(record.revision + 1, revision or 0)
            record.updated_at = time.time()
            return UpsertResult(changed=True, revision=record.revision)


def _same_state(current: DeviceState, candidate: DeviceState) -> bool:
    """Compare states without letting ``True == 1`` hide a bool/number switch."""
    if isinstance(current, bool) != isinstance(candidate, bool):
        return False
    return current == candidate
