"""
homesync._cli — CLI entry point for the homesync package.

Lists the configured devices, toggles a device over MQTT, and streams or
snapshots synchronised device state. Connection flags fall back to the
``HOMESYNC_*`` environment variables (see :mod:`homesync.config`).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
from pathlib import Path
import sys
from typing import TYPE_CHECKING, Any

from homesync.client import HomeSyncClient
from homesync.config import BrokerSettings, load_devices
from homesync.const import DEFAULT_DEVICES
from homesync.exceptions import HomesyncError
from homesync.registry import DeviceRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from homesync.models import DeviceRecord

_CLI_EPILOG = """
Commands
────────

  devices       Print the configured device table (no broker needed).
  toggle TOPIC  Wait --settle seconds for the current state, then toggle
                the device and publish the new state.
  watch         Stream state changes (Ctrl+C to stop).
  status        Collect state for --timeout seconds, then print a snapshot.

Connection (optional; defaults come from HOMESYNC_* environment variables)
  --broker HOST     Broker host (default: localhost).
  --port PORT       MQTT port (default: 1883).
  --client-id ID    MQTT client id (default: IoTAppClient).
  --username USER   Broker username.
  --password PASS   Broker password.
  --timeout N       Timeout in seconds (default: 5).
  --devices FILE    JSON list of {"topic", "qos", "kind", "display_name"} objects.
  --debug           Enable debug logging (shows every MQTT message).

Examples
  homesync devices
  homesync toggle home/room1/lamp
  homesync toggle home/foyer/entrance --settle 3
  homesync watch --broker 192.168.1.10
  homesync status --timeout 2
"""


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--broker", type=str, default=None, help="Broker host.")
    parser.add_argument("--port", type=int, default=None, help="MQTT port (default: 1883).")
    parser.add_argument(
        "--client-id", type=str, default=None, dest="client_id", help="MQTT client id."
    )
    parser.add_argument("--username", type=str, default=None, help="Broker username.")
    parser.add_argument("--password", type=str, default=None, help="Broker password.")
    parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Timeout in seconds (default: 5).",
    )
    _add_common_args(parser)


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--devices",
        type=str,
        default=None,
        metavar="FILE",
        help="JSON file with the device list (default: built-in house layout).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if getattr(args, "debug", False) else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _read_devices(args: argparse.Namespace) -> list[Any]:
    """Return the raw device entries from ``--devices`` or the built-in table."""
    path = getattr(args, "devices", None)
    if not path:
        return list(DEFAULT_DEVICES)
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SystemExit(f"Cannot read device list {path}: {exc}") from exc
    if not isinstance(data, list):
        raise SystemExit(f"Device list {path} must be a JSON array")
    return data


def _settings_from_args(args: argparse.Namespace) -> BrokerSettings:
    return BrokerSettings.from_env().merged(
        broker=getattr(args, "broker", None),
        port=getattr(args, "port", None),
        client_id=getattr(args, "client_id", None),
        username=getattr(args, "username", None),
        password=getattr(args, "password", None),
        connect_timeout=getattr(args, "timeout", None),
    )


async def _with_client(args: argparse.Namespace) -> AsyncIterator[HomeSyncClient]:
    """Yield a connected client. Disconnects on exit."""
    try:
        client = HomeSyncClient(devices=_read_devices(args), settings=_settings_from_args(args))
    except ValueError as exc:
        raise SystemExit(f"Invalid device list: {exc}") from exc
    try:
        await client.connect()
    except HomesyncError as exc:
        raise SystemExit(f"Cannot connect to {client.settings.broker}: {exc}") from exc
    try:
        yield client
    finally:
        with contextlib.suppress(Exception):
            await client.disconnect()


def _fmt_state(record: DeviceRecord) -> str:
    if isinstance(record.state, bool):
        return "ON" if record.state else "OFF"
    return str(record.state)


def _print_records(records: list[DeviceRecord]) -> None:
    col_topic = max((len(r.topic) for r in records), default=5) + 1
    col_name = max((len(r.display_name) for r in records), default=4) + 1
    fmt = f"{{:<{col_topic}}} {{:<{col_name}}} {{:<12}} {{:<4}} {{:<6}} {{:<8}} {{}}"
    print(fmt.format("TOPIC", "NAME", "KIND", "QOS", "STATE", "ORIGIN", "REV"))
    print("-" * (col_topic + col_name + 40))
    for r in records:
        print(
            fmt.format(
                r.topic,
                r.display_name,
                r.kind.value,
                int(r.qos),
                _fmt_state(r),
                r.last_origin.value,
                r.revision,
            )
        )


def _main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="homesync",
        description="Synchronise device state with an MQTT broker.",
        epilog=_CLI_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", title="commands")

    devices_parser = subparsers.add_parser("devices", help="Print the configured device table.")
    _add_common_args(devices_parser)

    toggle_parser = subparsers.add_parser(
        "toggle", help="Wait for the current state, then toggle a device and publish it."
    )
    toggle_parser.add_argument("topic", type=str, help="Device topic (e.g. home/room1/lamp).")
    toggle_parser.add_argument(
        "--settle",
        type=float,
        default=1.0,
        help="Seconds to collect broker state before toggling (default: 1).",
    )
    _add_connection_args(toggle_parser)

    watch_parser = subparsers.add_parser("watch", help="Stream state changes (Ctrl+C to stop).")
    _add_connection_args(watch_parser)

    status_parser = subparsers.add_parser(
        "status", help="Collect state for --timeout seconds, then print a snapshot."
    )
    _add_connection_args(status_parser)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    _configure_logging(args)
    handlers = {
        "devices": _run_devices,
        "toggle": _run_toggle,
        "watch": _run_watch,
        "status": _run_status,
    }
    handler = handlers.get(args.command)
    if handler:
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(handler(args))
    else:
        parser.print_help()
        sys.exit(1)


async def _run_devices(args: argparse.Namespace) -> None:
    try:
        registry = DeviceRegistry(load_devices(_read_devices(args)))
    except ValueError as exc:
        raise SystemExit(f"Invalid device list: {exc}") from exc
    _print_records(registry.snapshot())


async def _run_toggle(args: argparse.Namespace) -> None:
    async for client in _with_client(args):
        # Let retained or live broker messages land before flipping.
        await asyncio.sleep(args.settle)
        current = client.get(args.topic)
        if current is not None and current.revision == 0:
            print(f"No state received for {args.topic}; toggling from OFF.")
        result = client.toggle(args.topic)
        if result.record is None:
            print(f"Unknown device: {args.topic}")
            sys.exit(1)
        print(f"{result.record.display_name}: {_fmt_state(result.record)}")
        if not result.ok:
            print(f"Warning: {result.error}")
            sys.exit(1)
        break


async def _run_watch(args: argparse.Namespace) -> None:
    async for client in _with_client(args):
        client.subscribe_stale(
            lambda stale: print("Connection lost — states are stale." if stale else "Reconnected.")
        )
        print("Watching device state (Ctrl+C to stop)...")
        try:
            async for record in client.watch():
                print(
                    f"  {record.display_name:<32} {_fmt_state(record):<6} "
                    f"({record.last_origin.value}, rev {record.revision})"
                )
        except asyncio.CancelledError:
            break
        break


async def _run_status(args: argparse.Namespace) -> None:
    async for client in _with_client(args):
        await asyncio.sleep(args.timeout)
        _print_records(client.devices())
        if client.is_stale:
            print("\n(states are stale: connection was lost)")
        break


def main() -> None:
    _main()
