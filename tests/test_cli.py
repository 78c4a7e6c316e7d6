"""Tests for homesync._cli — CLI entry point."""

from __future__ import annotations

import argparse
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from homesync._cli import (
    _add_connection_args,
    _main,
    _read_devices,
    _run_status,
    _run_toggle,
    _settings_from_args,
    _with_client,
)
from homesync.const import DEFAULT_DEVICES
from homesync.exceptions import TransportError
from homesync.models import DeviceConfig, DeviceRecord, Origin, SyncResult

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_args(**kwargs) -> argparse.Namespace:
    """Build a Namespace with sensible CLI defaults."""
    defaults = {
        "broker": None,
        "port": None,
        "client_id": None,
        "username": None,
        "password": None,
        "timeout": 0.0,
        "settle": 0.0,
        "devices": None,
        "debug": False,
    }
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


def _record(topic: str = "home/room1/lamp", state: bool = True) -> DeviceRecord:
    record = DeviceRecord.from_config(DeviceConfig(topic, 0, "lamp", "Lamp 1"))
    record.state = state
    record.revision = 1
    record.last_origin = Origin.LOCAL
    return record


def _mock_client() -> MagicMock:
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.is_stale = False
    client.settings.broker = "localhost"
    return client


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------


class TestAddConnectionArgs:
    def test_has_all_core_flags(self):
        parser = argparse.ArgumentParser()
        _add_connection_args(parser)
        args = parser.parse_args(
            ["--broker", "10.0.0.1", "--port", "1884", "--client-id", "cli", "--debug"]
        )
        assert args.broker == "10.0.0.1"
        assert args.port == 1884
        assert args.client_id == "cli"
        assert args.debug is True

    def test_defaults(self):
        parser = argparse.ArgumentParser()
        _add_connection_args(parser)
        args = parser.parse_args([])
        assert args.broker is None
        assert args.timeout == 5.0
        assert args.devices is None


class TestSettingsFromArgs:
    def test_flags_override_env(self, monkeypatch):
        monkeypatch.setenv("HOMESYNC_BROKER", "env-broker")
        monkeypatch.setenv("HOMESYNC_PORT", "1999")
        settings = _settings_from_args(_make_args(broker="flag-broker", timeout=3.0))
        assert settings.broker == "flag-broker"
        assert settings.port == 1999
        assert settings.connect_timeout == 3.0


class TestReadDevices:
    def test_default_table(self):
        assert _read_devices(_make_args()) == list(DEFAULT_DEVICES)

    def test_json_file(self, tmp_path):
        path = tmp_path / "devices.json"
        path.write_text(json.dumps([{"topic": "home/attic/lamp", "display_name": "Attic"}]))
        assert _read_devices(_make_args(devices=str(path))) == [
            {"topic": "home/attic/lamp", "display_name": "Attic"}
        ]

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit):
            _read_devices(_make_args(devices=str(tmp_path / "nope.json")))

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "devices.json"
        path.write_text("{}")
        with pytest.raises(SystemExit):
            _read_devices(_make_args(devices=str(path)))


# ---------------------------------------------------------------------------
# _with_client
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestWithClient:
    async def test_connects_and_disconnects(self):
        mock_client = _mock_client()
        with patch("homesync._cli.HomeSyncClient", return_value=mock_client):
            async for client in _with_client(_make_args()):
                assert client is mock_client
                break
        mock_client.connect.assert_awaited_once()

    async def test_connect_error_exits(self):
        mock_client = _mock_client()
        mock_client.connect = AsyncMock(side_effect=TransportError("refused"))
        with patch("homesync._cli.HomeSyncClient", return_value=mock_client):
            with pytest.raises(SystemExit, match="Cannot connect"):
                async for _ in _with_client(_make_args()):
                    pass

    async def test_invalid_device_list_exits(self):
        with patch("homesync._cli.HomeSyncClient", side_effect=ValueError("Duplicate")):
            with pytest.raises(SystemExit, match="Invalid device list"):
                async for _ in _with_client(_make_args()):
                    pass


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestRunToggle:
    async def test_prints_new_state(self, capsys):
        mock_client = _mock_client()
        mock_client.toggle.return_value = SyncResult(
            topic="home/room1/lamp", origin=Origin.LOCAL, changed=True, record=_record()
        )
        with patch("homesync._cli.HomeSyncClient", return_value=mock_client):
            await _run_toggle(_make_args(topic="home/room1/lamp"))
        assert "Lamp 1: ON" in capsys.readouterr().out
        mock_client.toggle.assert_called_once_with("home/room1/lamp")

    async def test_unknown_device_exits_nonzero(self, capsys):
        mock_client = _mock_client()
        mock_client.toggle.return_value = SyncResult(topic="home/garage/fan", origin=Origin.LOCAL)
        with patch("homesync._cli.HomeSyncClient", return_value=mock_client):
            with pytest.raises(SystemExit) as excinfo:
                await _run_toggle(_make_args(topic="home/garage/fan"))
        assert excinfo.value.code == 1
        assert "Unknown device" in capsys.readouterr().out

    async def test_publish_failure_exits_nonzero(self, capsys):
        mock_client = _mock_client()
        mock_client.toggle.return_value = SyncResult(
            topic="home/room1/lamp",
            origin=Origin.LOCAL,
            changed=True,
            record=_record(),
            error=TransportError("offline"),
        )
        with patch("homesync._cli.HomeSyncClient", return_value=mock_client):
            with pytest.raises(SystemExit):
                await _run_toggle(_make_args(topic="home/room1/lamp"))
        assert "Warning: offline" in capsys.readouterr().out

    async def test_waits_for_broker_state_before_toggling(self):
        mock_client = _mock_client()
        mock_client.toggle.return_value = SyncResult(
            topic="home/room1/lamp", origin=Origin.LOCAL, changed=True, record=_record()
        )
        calls = MagicMock()
        calls.attach_mock(mock_client.toggle, "toggle")
        with (
            patch("homesync._cli.HomeSyncClient", return_value=mock_client),
            patch("homesync._cli.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            calls.attach_mock(mock_sleep, "sleep")
            await _run_toggle(_make_args(topic="home/room1/lamp", settle=1.5))
        assert [c[0] for c in calls.mock_calls] == ["sleep", "toggle"]
        mock_sleep.assert_awaited_once_with(1.5)

    async def test_notes_when_no_state_arrived(self, capsys):
        mock_client = _mock_client()
        mock_client.get.return_value = DeviceRecord.from_config(
            DeviceConfig("home/room1/lamp", 0, "lamp", "Lamp 1")
        )
        mock_client.toggle.return_value = SyncResult(
            topic="home/room1/lamp", origin=Origin.LOCAL, changed=True, record=_record()
        )
        with patch("homesync._cli.HomeSyncClient", return_value=mock_client):
            await _run_toggle(_make_args(topic="home/room1/lamp"))
        assert "No state received for home/room1/lamp" in capsys.readouterr().out


@pytest.mark.asyncio
class TestRunStatus:
    async def test_prints_table(self, capsys):
        mock_client = _mock_client()
        mock_client.devices.return_value = [_record()]
        with patch("homesync._cli.HomeSyncClient", return_value=mock_client):
            await _run_status(_make_args())
        out = capsys.readouterr().out
        assert "TOPIC" in out
        assert "home/room1/lamp" in out
        assert "stale" not in out

    async def test_stale_note(self, capsys):
        mock_client = _mock_client()
        mock_client.devices.return_value = [_record()]
        mock_client.is_stale = True
        with patch("homesync._cli.HomeSyncClient", return_value=mock_client):
            await _run_status(_make_args())
        assert "stale" in capsys.readouterr().out


class TestMain:
    def test_devices_command(self, capsys):
        _main(["devices"])
        out = capsys.readouterr().out
        assert "Kitchen Smoke Detector" in out
        assert "home/foyer/entrance" in out

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            _main([])
        assert excinfo.value.code == 0
        assert "homesync" in capsys.readouterr().out
