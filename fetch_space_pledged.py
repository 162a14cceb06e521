"""
Fetch the "space pledged" metric for a network.

Two sources are supported:
  - api: the telemetry JSON endpoint, which exposes {"spacePledged": ...}
  - rpc: the consensus chain itself, derived from the current solution range
"""

import argparse
import asyncio
import json
import urllib.request

from substrateinterface import SubstrateInterface

from networks import NETWORKS, get_targets
from utils import MetricFetchError, get_ssl_context, retry_async

TIMEOUT_SECONDS = 20
MAX_U64 = 2**64 - 1
PIECE_SIZE = 1048576
DEFAULT_SLOT_PROBABILITY = (1, 6)


def make_request(url):
    ctx = get_ssl_context()
    req = urllib.request.Request(url, headers={'User-Agent': 'Mozilla/5.0', 'Accept': 'application/json'})
    with urllib.request.urlopen(req, timeout=TIMEOUT_SECONDS, context=ctx) as response:
        return json.loads(response.read())


def fetch_from_api(url):
    data = make_request(url)
    if not isinstance(data, dict) or data.get("spacePledged") is None:
        raise MetricFetchError(f"No spacePledged in response from {url}")
    return data["spacePledged"]


def space_pledged_from_solution_range(solution_range, slot_probability=DEFAULT_SLOT_PROBABILITY):
    num, den = slot_probability
    if not solution_range or not den:
        raise MetricFetchError(f"Cannot derive space pledged from solution range {solution_range!r}")
    return MAX_U64 * PIECE_SIZE * int(num) // int(solution_range) // int(den)


def fetch_from_rpc(endpoint):
    substrate = SubstrateInterface(url=endpoint)
    try:
        ranges = substrate.query("Subspace", "SolutionRanges").value
        current = ranges.get("current") if isinstance(ranges, dict) else None
        constant = substrate.get_constant("Subspace", "SlotProbability")
        slot_probability = tuple(constant.value) if constant is not None else DEFAULT_SLOT_PROBABILITY
    finally:
        substrate.close()
    return space_pledged_from_solution_range(current, slot_probability)


async def fetch_once(target):
    if target.metric_source == "api":
        return await asyncio.to_thread(fetch_from_api, target.metric_endpoint)
    if target.metric_source == "rpc":
        return await asyncio.to_thread(fetch_from_rpc, target.metric_endpoint)
    raise MetricFetchError(f"Unknown metric source '{target.metric_source}' for {target.name}")


async def fetch_space_pledged(target, attempts=3, delay=2.0):
    """Fetch with a fixed-backoff retry; the last error propagates."""
    print(f"Fetching space pledged data for {target.name}")
    value = await retry_async(
        lambda: fetch_once(target),
        attempts=attempts,
        delay=delay,
        label=f"{target.name} space pledged",
    )
    print(f"{target.name} space pledged data: {value}")
    return value


async def main():
    p = argparse.ArgumentParser(description="Print space pledged for one or more networks")
    p.add_argument("networks", nargs="*", default=["taurus", "gemini"], help=f"any of: {', '.join(NETWORKS)}")
    p.add_argument("--attempts", type=int, default=3)
    args = p.parse_args()

    for target in get_targets(args.networks):
        try:
            await fetch_space_pledged(target, attempts=args.attempts)
        except Exception as e:
            print(f"✗ Failed {target.name}: {e}")


if __name__ == "__main__":
    asyncio.run(main())
