"""Tests for homesync._codec — payload grammar encode/decode helpers."""

from __future__ import annotations

import pytest

from homesync._codec import DecodedPayload, decode, encode, parse_payload, tokens_for
from homesync.exceptions import MalformedPayloadError
from homesync.models import DeviceConfig, DeviceKind


@pytest.fixture
def lamp() -> DeviceConfig:
    return DeviceConfig("home/room1/lamp", 0, DeviceKind.LAMP, "Lamp 1")


@pytest.fixture
def entrance() -> DeviceConfig:
    return DeviceConfig("home/foyer/entrance", 1, DeviceKind.ENTRANCE, "Foyer Entrance")


@pytest.fixture
def smoke() -> DeviceConfig:
    return DeviceConfig("home/kitchen/smoke", 1, DeviceKind.SMOKE_DETECTOR)


@pytest.fixture
def thermo() -> DeviceConfig:
    return DeviceConfig("home/livingroom/temperature", 0, DeviceKind.TEMPERATURE_SENSOR)


class TestEncode:
    def test_returns_bytes(self, lamp):
        assert isinstance(encode(lamp, True), bytes)

    def test_on_is_topic_prefixed(self, lamp):
        assert encode(lamp, True) == b"home/room1/lamp: ON"

    def test_off_is_topic_prefixed(self, lamp):
        assert encode(lamp, False) == b"home/room1/lamp: OFF"

    def test_revision_marker_appended(self, lamp):
        assert encode(lamp, False, 3) == b"home/room1/lamp: OFF @3"

    def test_sensor_reading(self, thermo):
        assert encode(thermo, 21.5) == b"home/livingroom/temperature: 21.5"

    def test_sensor_integer_reading_is_float(self, thermo):
        assert encode(thermo, 21) == b"home/livingroom/temperature: 21.0"

    def test_numeric_state_rejected_for_lamp(self, lamp):
        with pytest.raises(MalformedPayloadError):
            encode(lamp, 0.5)

    def test_non_finite_reading_rejected(self, thermo):
        with pytest.raises(MalformedPayloadError):
            encode(thermo, float("nan"))


class TestDecodeTokens:
    @pytest.mark.parametrize(
        "payload",
        [b"ON", b"on", b"true", b"1", b"home/room1/lamp: ON", b"Lamp 1: on", b"  ON  "],
    )
    def test_on_forms(self, lamp, payload):
        assert decode(lamp, payload) is True

    @pytest.mark.parametrize(
        "payload",
        [b"OFF", b"off", b"False", b"0", b"home/room1/lamp: OFF", b"Lamp 1: off"],
    )
    def test_off_forms(self, lamp, payload):
        assert decode(lamp, payload) is False

    def test_prefix_with_colons_uses_last_segment(self, lamp):
        assert decode(lamp, b"urn:lamp:1: ON") is True

    def test_token_must_be_whole_word(self, lamp):
        """``ONE`` contains ``ON`` but is not the token."""
        with pytest.raises(MalformedPayloadError):
            decode(lamp, b"ONE")

    def test_ambiguous_body_rejected(self, lamp):
        with pytest.raises(MalformedPayloadError, match="Ambiguous"):
            decode(lamp, b"ON OFF")

    def test_bare_digit_only_as_whole_body(self, lamp):
        with pytest.raises(MalformedPayloadError):
            decode(lamp, b"level 1")

    def test_entrance_tokens(self, entrance):
        assert decode(entrance, b"home/foyer/entrance: OPEN") is True
        assert decode(entrance, b"closed") is False

    def test_smoke_tokens(self, smoke):
        assert decode(smoke, b"ALARM") is True
        assert decode(smoke, b"clear") is False

    def test_kind_tokens_not_shared(self, lamp):
        """OPEN is an entrance token, not a lamp token."""
        with pytest.raises(MalformedPayloadError):
            decode(lamp, b"OPEN")

    def test_tokens_for_entrance(self, entrance):
        on, off = tokens_for(entrance)
        assert {"ON", "TRUE", "OPEN"} <= on
        assert {"OFF", "FALSE", "CLOSED"} <= off


class TestDecodeSensor:
    def test_numeric_reading(self, thermo):
        assert decode(thermo, b"home/livingroom/temperature: 21.5") == 21.5

    def test_negative_reading(self, thermo):
        assert decode(thermo, b"-3.25") == -3.25

    def test_sensor_still_accepts_tokens(self, thermo):
        assert decode(thermo, b"ON") is True

    @pytest.mark.parametrize(("payload", "reading"), [(b"0", 0.0), (b"1", 1.0), (b"0 @4", 0.0)])
    def test_bare_digit_is_a_reading(self, thermo, payload, reading):
        value = decode(thermo, payload)
        assert value == reading
        assert isinstance(value, float)
        assert not isinstance(value, bool)

    def test_prefixed_zero_reading(self, thermo):
        decoded = parse_payload(thermo, b"home/livingroom/temperature: 0")
        assert decoded == DecodedPayload(0.0, None)
        assert type(decoded.state) is float

    def test_infinite_reading_rejected(self, thermo):
        with pytest.raises(MalformedPayloadError):
            decode(thermo, b"inf")

    def test_numeric_rejected_for_lamp(self, lamp):
        with pytest.raises(MalformedPayloadError):
            decode(lamp, b"21.5")


class TestMalformed:
    def test_empty_payload(self, lamp):
        with pytest.raises(MalformedPayloadError, match="Empty"):
            decode(lamp, b"")

    def test_prefix_without_body(self, lamp):
        with pytest.raises(MalformedPayloadError):
            decode(lamp, b"home/room1/lamp:")

    def test_invalid_utf8(self, lamp):
        with pytest.raises(MalformedPayloadError, match="UTF-8"):
            decode(lamp, b"\xff\xfe\xfd")

    def test_garbage(self, lamp):
        with pytest.raises(MalformedPayloadError) as excinfo:
            decode(lamp, b"banana")
        assert excinfo.value.topic == "home/room1/lamp"
        assert excinfo.value.payload == b"banana"


class TestParsePayload:
    def test_without_revision(self, lamp):
        assert parse_payload(lamp, b"ON") == DecodedPayload(True, None)

    def test_with_revision(self, lamp):
        assert parse_payload(lamp, b"home/room1/lamp: OFF @7") == DecodedPayload(False, 7)

    def test_revision_marker_spacing(self, lamp):
        assert parse_payload(lamp, b"ON@12").revision == 12

    def test_encoded_payload_parses_back(self, thermo):
        decoded = parse_payload(thermo, encode(thermo, 19.75, 4))
        assert decoded == DecodedPayload(19.75, 4)


class TestRoundTrip:
    @pytest.mark.parametrize("kind", list(DeviceKind))
    @pytest.mark.parametrize("state", [True, False])
    def test_bool_state_every_kind(self, kind, state):
        device = DeviceConfig(f"home/test/{kind.value}", kind=kind)
        assert decode(device, encode(device, state)) is state

    @pytest.mark.parametrize("kind", [DeviceKind.TEMPERATURE_SENSOR, DeviceKind.HUMIDITY_SENSOR])
    def test_sensor_reading(self, kind):
        device = DeviceConfig(f"home/test/{kind.value}", kind=kind)
        assert decode(device, encode(device, 48.125)) == 48.125
