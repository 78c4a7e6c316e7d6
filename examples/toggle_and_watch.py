#!/usr/bin/env python3
"""
toggle_and_watch.py — Toggle a lamp, then print every synchronised change.

Run two copies against the same broker (with different client ids) and
toggle from one: the other follows, and neither echoes the change back.

Usage:
    python examples/toggle_and_watch.py --broker 192.168.1.10
    python examples/toggle_and_watch.py --topic home/kitchen/lamp --client-id tablet
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging

from homesync import BrokerSettings, HomeSyncClient

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(name)s  %(message)s")


async def main(settings: BrokerSettings, topic: str) -> None:
    print(f"\nConnecting to {settings.broker}:{settings.port} as {settings.client_id}")

    async with HomeSyncClient(settings=settings) as client:
        client.subscribe_stale(
            lambda stale: print("   (connection lost, states are stale)" if stale else "   (back)")
        )

        result = client.toggle(topic)
        if result.record is None:
            print(f"Unknown device {topic}")
            return
        print(f"\n{result.record.display_name} -> {'ON' if result.record.is_on else 'OFF'}")
        if not result.ok:
            print(f"   publish failed: {result.error}")

        print("\nWatching (Ctrl+C to stop)...")
        async for record in client.watch():
            print(
                f"   {record.display_name:<32} {record.state!s:<6} "
                f"{record.last_origin.value:<7} rev {record.revision}"
            )


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="homesync toggle + watch")
    ap.add_argument("--broker", default="localhost", help="MQTT broker host")
    ap.add_argument("--port", type=int, default=1883, help="MQTT broker port")
    ap.add_argument("--client-id", default="IoTAppClient", help="MQTT client id")
    ap.add_argument("--topic", default="home/room1/lamp", help="Device to toggle")
    args = ap.parse_args()

    settings = BrokerSettings(broker=args.broker, port=args.port, client_id=args.client_id)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main(settings, args.topic))
