"""
homesync._codec — text encode/decode helpers for device payloads.

Device payloads are short UTF-8 strings. The encoder always produces the
prefixed form ``"<topic>: ON"`` / ``"<topic>: OFF"`` (or ``"<topic>: 21.5"``
for a sensor reading), optionally followed by a revision marker ``" @7"``.

The decoder accepts a declared grammar rather than a single exact format so
that heterogeneous publishers interoperate without a version flag::

    payload  := [ prefix ":" ] body [ "@" revision ]
    body     := words containing exactly one recognised token
              | "1" | "0"                    (non-sensor kinds)
              | number                       (sensor kinds only)

Tokens are case-insensitive whole words; the closed set per kind is built
from :data:`~homesync.const.COMMON_ON_TOKENS` plus the per-kind extras
(``OPEN``/``CLOSED`` for entrances, ``ALARM``/``CLEAR`` for smoke
detectors). A word that merely contains a token (``"ONE"``) does not count,
and a body naming both an on- and an off-token is rejected as ambiguous.
For sensors a bare ``"1"``/``"0"`` is a reading (``1.0``/``0.0``), not a
switch state.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import re
from typing import TYPE_CHECKING

from .const import (
    BARE_OFF_TOKEN,
    BARE_ON_TOKEN,
    COMMON_OFF_TOKENS,
    COMMON_ON_TOKENS,
    KIND_OFF_TOKENS,
    KIND_ON_TOKENS,
    PREFIX_SEPARATOR,
    REVISION_MARKER,
    TOKEN_OFF,
    TOKEN_ON,
)
from .exceptions import MalformedPayloadError

if TYPE_CHECKING:
    from .models import DeviceConfig, DeviceRecord, DeviceState

_WORD_RE = re.compile(r"[A-Za-z]+")
_REVISION_RE = re.compile(re.escape(REVISION_MARKER) + r"\s*(\d+)\s*$")


@dataclass(frozen=True)
class DecodedPayload:
    """A decoded payload: the candidate state plus the optional revision marker."""

    state: DeviceState
    revision: int | None = None


def tokens_for(device: DeviceRecord | DeviceConfig) -> tuple[frozenset[str], frozenset[str]]:
    """Return the ``(on_tokens, off_tokens)`` recognised for *device*'s kind."""
    kind = device.kind.value
    on = COMMON_ON_TOKENS | KIND_ON_TOKENS.get(kind, frozenset())
    off = COMMON_OFF_TOKENS | KIND_OFF_TOKENS.get(kind, frozenset())
    return on, off


def encode(
    device: DeviceRecord | DeviceConfig,
    state: DeviceState,
    revision: int | None = None,
) -> bytes:
    """
    Encode *state* for *device* as a UTF-8 payload.

    Args:
        device:   Target device (its topic is used as the name prefix).
        state:    ``True``/``False``, or a finite number for sensor kinds.
        revision: When given, appended as ``" @<revision>"``.

    Returns:
        Payload bytes ready to publish.

    Raises:
        MalformedPayloadError: If *state* cannot be represented for this kind.

    Example::

        encode(lamp, True)            # b"home/room1/lamp: ON"
        encode(thermo, 21.5)          # b"home/livingroom/temperature: 21.5"
        encode(lamp, False, 3)        # b"home/room1/lamp: OFF @3"
    """
    if isinstance(state, bool):
        body = TOKEN_ON if state else TOKEN_OFF
    elif isinstance(state, int | float) and device.kind.is_sensor:
        if not math.isfinite(state):
            raise MalformedPayloadError(
                f"Cannot encode non-finite reading {state!r}", topic=device.topic
            )
        body = repr(float(state))
    else:
        raise MalformedPayloadError(
            f"Cannot encode {state!r} for {device.kind.value} device", topic=device.topic
        )
    text = f"{device.topic}{PREFIX_SEPARATOR} {body}"
    if revision is not None:
        text = f"{text} {REVISION_MARKER}{revision}"
    return text.encode("utf-8")


def parse_payload(device: DeviceRecord | DeviceConfig, data: bytes) -> DecodedPayload:
    """
    Decode *data* for *device* into a :class:`DecodedPayload`.

    Raises:
        MalformedPayloadError: If the payload does not match the grammar.
    """
    topic = device.topic
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise MalformedPayloadError("Payload is not valid UTF-8", topic, data) from exc

    revision: int | None = None
    match = _REVISION_RE.search(text)
    if match:
        revision = int(match.group(1))
        text = text[: match.start()].rstrip()

    # Drop an optional "<name>:" prefix; names may themselves contain colons.
    body = text.rsplit(PREFIX_SEPARATOR, 1)[-1].strip()
    if not body:
        raise MalformedPayloadError("Empty payload body", topic, data)

    if not device.kind.is_sensor:
        if body == BARE_ON_TOKEN:
            return DecodedPayload(True, revision)
        if body == BARE_OFF_TOKEN:
            return DecodedPayload(False, revision)

    on_tokens, off_tokens = tokens_for(device)
    words = {w.upper() for w in _WORD_RE.findall(body)}
    is_on = bool(words & on_tokens)
    is_off = bool(words & off_tokens)
    if is_on and is_off:
        raise MalformedPayloadError(f"Ambiguous payload body {body!r}", topic, data)
    if is_on or is_off:
        return DecodedPayload(is_on, revision)

    if device.kind.is_sensor:
        try:
            reading = float(body)
        except ValueError:
            pass
        else:
            if math.isfinite(reading):
                return DecodedPayload(reading, revision)

    raise MalformedPayloadError(
        f"No recognised token in {body!r} for {device.kind.value} device", topic, data
    )


def decode(device: DeviceRecord | DeviceConfig, data: bytes) -> DeviceState:
    """
    Decode *data* for *device* into a state value.

    Accepts both the bare (``"ON"``) and the name-prefixed (``"Lamp 1: ON"``)
    conventions; any revision marker is ignored here (see :func:`parse_payload`).

    Raises:
        MalformedPayloadError: If the payload does not match the grammar.
    """
    return parse_payload(device, data).state
