"""
Client for the substrate-telemetry WebSocket feed.

Feed frames are JSON arrays of action codes followed by their payloads, e.g.
[13, "0x66..", 3, [id, [name, type, version, ?, peer_id], ..., startup_ms]].
The layout was worked out from live traffic, so parsing is lenient: anything
that doesn't look like a node is skipped.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import aiohttp

from utils import FeedTimeout, utc_timestamp

ADDED_NODE = 3
SUBSCRIBED = (1, 13)
STARTUP_TIME_INDEX = 7


@dataclass(frozen=True)
class NodeRecord:
    node_id: Any
    name: str
    last_restart: Optional[str]


def _action_code(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


def _startup_iso(value) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return utc_timestamp(datetime.fromtimestamp(value / 1000, tz=timezone.utc))
    except (OverflowError, OSError, ValueError):
        return None


def parse_node(entry) -> Optional[NodeRecord]:
    if not isinstance(entry, list) or len(entry) < 2 or entry[0] is None:
        return None
    details = entry[1]
    if not isinstance(details, list) or not details or not isinstance(details[0], str):
        return None
    startup = entry[STARTUP_TIME_INDEX] if len(entry) > STARTUP_TIME_INDEX else None
    return NodeRecord(node_id=entry[0], name=details[0], last_restart=_startup_iso(startup))


def parse_feed_message(raw) -> Tuple[bool, List[NodeRecord]]:
    """
    Decode one frame.

    Returns (subscription confirmed, nodes added in this frame).
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="ignore")
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return False, []
    if not isinstance(message, list):
        return False, []

    subscribed = False
    nodes = []
    action = None
    for item in message:
        code = _action_code(item)
        if code is not None:
            action = code
            if action in SUBSCRIBED:
                subscribed = True
            continue
        if action == ADDED_NODE:
            node = parse_node(item)
            if node is not None:
                nodes.append(node)
    return subscribed, nodes


async def read_feed(ws, chain_hash, quiet_period=15.0, timeout=120.0):
    """Subscribe on an open socket and gather nodes until the feed goes quiet."""
    loop = asyncio.get_running_loop()
    nodes = {}
    subscribed = False
    start = last_node = loop.time()

    await ws.send_str(f"subscribe:{chain_hash}")

    while True:
        now = loop.time()
        remaining = timeout - (now - start)
        if remaining <= 0:
            print(f"Timeout reached. Subscribed: {subscribed}, nodes: {len(nodes)}")
            break
        wait = remaining
        if subscribed and nodes:
            quiet_left = quiet_period - (now - last_node)
            if quiet_left <= 0:
                print(f"No new nodes for {now - last_node:.1f}s, resolving with {len(nodes)} nodes")
                return list(nodes.values())
            wait = min(remaining, quiet_left)

        try:
            msg = await asyncio.wait_for(ws.receive(), timeout=wait)
        except asyncio.TimeoutError:
            continue

        if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                        aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
            print(f"WebSocket closed ({msg.type.name})")
            break
        if msg.type not in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            continue

        confirmed, batch = parse_feed_message(msg.data)
        if confirmed and not subscribed:
            print("Subscription confirmed")
            subscribed = True
        for node in batch:
            nodes[node.node_id] = node
            last_node = loop.time()
        if batch:
            print(f"Current nodes count: {len(nodes)}")

    if nodes:
        print(f"Resolving with {len(nodes)} nodes")
        return list(nodes.values())
    raise FeedTimeout("Timeout waiting for telemetry data")


async def collect_nodes(url, chain_hash, quiet_period=15.0, timeout=120.0):
    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(url, heartbeat=30) as ws:
            print("Connected to Telemetry WebSocket")
            return await read_feed(ws, chain_hash, quiet_period, timeout)
