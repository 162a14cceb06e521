"""
Record the last restart time of every mainnet node.

Listens to the telemetry WebSocket feed and appends one
[timestamp, node name, last restart] row per node to a daily worksheet
named mainnet_YYYY-MM-DD.
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone

from config import load_settings
from networks import MAINNET_GENESIS
from sheets import NODE_SHEET_HEADER, SheetWriter
from telemetry_feed import collect_nodes
from utils import ConfigError, SheetUpdaterError, utc_timestamp

FALLBACK_SHEET = "mainnet"


def daily_sheet_title(now=None):
    now = now or datetime.now(timezone.utc)
    return f"mainnet_{now.strftime('%Y-%m-%d')}"


def node_rows(timestamp, nodes):
    return [[timestamp, n.name, n.last_restart or ""] for n in nodes]


async def track(settings, writer, chain_hash=MAINNET_GENESIS, quiet_period=15.0, timeout=120.0):
    """Returns the number of rows appended."""
    if not settings.websocket_url:
        raise ConfigError("TELEMETRY_WEBSOCKET_URL is not set")

    title = daily_sheet_title()
    print(f"Checking for sheet: {title}")
    title = await asyncio.to_thread(writer.ensure_worksheet, title, NODE_SHEET_HEADER, FALLBACK_SHEET)

    nodes = await collect_nodes(settings.websocket_url, chain_hash, quiet_period, timeout)
    rows = node_rows(utc_timestamp(), nodes)
    if not rows:
        print("Skipping data append due to empty nodes")
        return 0

    await asyncio.to_thread(writer.append_rows, title, rows)
    print(f"Data appended to sheet: {title}")
    return len(rows)


def main(argv=None):
    p = argparse.ArgumentParser(description="Append per-node restart times from the telemetry feed")
    p.add_argument("--env-file", default=".env")
    p.add_argument("--chain", default=MAINNET_GENESIS, help="genesis hash to subscribe to")
    p.add_argument("--quiet", type=float, default=15.0, help="seconds without new nodes before stopping")
    p.add_argument("--timeout", type=float, default=120.0)
    args = p.parse_args(argv)

    print(f"Function invoked at: {utc_timestamp()}")
    try:
        settings = load_settings(args.env_file)
        writer = SheetWriter.from_settings(settings)
        appended = asyncio.run(track(settings, writer, args.chain, args.quiet, args.timeout))
    except SheetUpdaterError as e:
        print(f"Error: {e}")
        return 1
    except Exception as e:
        print(f"Error details: {e}")
        return 1
    return 0 if appended else 1


if __name__ == "__main__":
    sys.exit(main())
