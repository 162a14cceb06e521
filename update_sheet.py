"""
Update the Google Sheet with fresh telemetry numbers.

For every configured network: scrape the dashboard, fetch space pledged and
append one row to the network's worksheet. Networks run concurrently and fail
independently; failed networks are retried as a whole a few times before the
run is reported as failed.

Usage: python3 update_sheet.py [--network taurus --network gemini] [--loop]
"""

import argparse
import asyncio
import sys
import time
from datetime import datetime, timedelta, timezone

from config import load_settings
from fetch_space_pledged import fetch_space_pledged
from scrape_telemetry_headless import ScrapeOptions, browser_session, open_page, scrape_network
from sheets import SheetWriter, build_report_row
from utils import (
    NodeCountMissing,
    RunTimeout,
    SheetUpdaterError,
    SheetWriteFailed,
    UpdateFailed,
    retry_async,
    short_error,
    utc_timestamp,
)

APPENDED = "appended"
SKIPPED = "skipped"
THROTTLED = "throttled"


async def is_throttled(writer, target, min_interval_minutes, now=None):
    if min_interval_minutes <= 0:
        return False
    last = await asyncio.to_thread(writer.last_timestamp, target.sheet_range)
    if last is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now - last < timedelta(minutes=min_interval_minutes)


async def process_network(browser, target, writer, settings, options=ScrapeOptions()):
    """Scrape, fetch and append for one network. Returns the outcome label."""
    if await is_throttled(writer, target, settings.min_update_interval):
        print(f"{target.name}: last row is newer than {settings.min_update_interval} min, skipping")
        return THROTTLED

    async with open_page(browser) as page:
        stats = await scrape_network(page, target, options)

    if stats.node_count is None:
        if settings.require_node_count:
            raise NodeCountMissing(f"{target.name}: node count not found on dashboard")
        print(f"Skipping {target.name} data append due to null node count")
        return SKIPPED

    pledged = await fetch_space_pledged(target)
    row = build_report_row(utc_timestamp(), stats, pledged)
    try:
        await asyncio.to_thread(writer.append_row, target.sheet_range, row)
    except Exception as e:
        raise SheetWriteFailed(f"{target.name}: append to '{target.sheet_range}' failed: {short_error(e)}") from e
    print(f"✓ {target.name} data appended to sheet '{target.sheet_range}'")
    return APPENDED


async def run_workflow(targets, writer, settings, options=ScrapeOptions()):
    """
    One pass over `targets` inside a single browser session.

    Returns {network name: outcome label or exception}.
    """
    async with browser_session(headless=settings.headless) as browser:
        results = await asyncio.gather(
            *(process_network(browser, t, writer, settings, options) for t in targets),
            return_exceptions=True,
        )
    outcome = {}
    for target, result in zip(targets, results):
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
        if isinstance(result, Exception):
            print(f"✗ Failed {target.name}: {short_error(result)}")
        outcome[target.name] = result
    return outcome


async def run_update(settings, targets, writer, options=ScrapeOptions()):
    """
    Run the workflow up to settings.attempts times.

    Only networks that failed are re-run on the next attempt, so a network
    never gets two rows from the same invocation. A failed append is not
    retried at all: the row may already be in the sheet. It still fails the run.
    """
    pending = list(targets)
    done = {}
    write_failed = {}

    async def attempt():
        nonlocal pending
        outcome = await run_workflow(pending, writer, settings, options)
        failed = {}
        for name, result in outcome.items():
            if isinstance(result, SheetWriteFailed):
                write_failed[name] = result
            elif isinstance(result, Exception):
                failed[name] = result
            else:
                done[name] = result
        pending = [t for t in pending if t.name in failed]
        if failed:
            raise UpdateFailed(failed)
        return done

    try:
        await retry_async(attempt, attempts=settings.attempts, delay=settings.retry_delay, label="Update run")
    except UpdateFailed as e:
        raise UpdateFailed({**e.failed, **write_failed}) from e
    if write_failed:
        raise UpdateFailed(write_failed)
    return done


async def run_with_timeout(coro, seconds):
    """Bound total wall-clock time; the browser is still closed on expiry."""
    if not seconds or seconds <= 0:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout=seconds)
    except asyncio.TimeoutError:
        raise RunTimeout(f"Run exceeded {seconds}s")


async def run_once(settings, writer=None):
    print(f"Function invoked at: {utc_timestamp()}")
    if writer is None:
        writer = await asyncio.to_thread(SheetWriter.from_settings, settings)
    targets = settings.targets()
    return await run_with_timeout(run_update(settings, targets, writer), settings.run_timeout)


def main(argv=None):
    p = argparse.ArgumentParser(description="Scrape telemetry stats and append them to Google Sheets")
    p.add_argument("--network", action="append", help="network to update (repeatable); default from NETWORKS")
    p.add_argument("--attempts", type=int, help="workflow attempts (default UPDATE_ATTEMPTS or 3)")
    p.add_argument("--timeout", type=float, help="wall-clock limit per run in seconds (0 = none)")
    p.add_argument("--loop", action="store_true", help="keep running every --interval-hours")
    p.add_argument("--interval-hours", type=float, default=4.0)
    p.add_argument("--env-file", default=".env")
    p.add_argument("--headed", action="store_true", help="show the browser window")
    args = p.parse_args(argv)

    try:
        settings = load_settings(args.env_file)
        if args.network:
            settings.networks = args.network
        if args.attempts is not None:
            settings.attempts = args.attempts
        if args.timeout is not None:
            settings.run_timeout = args.timeout
        if args.headed:
            settings.headless = False
        settings.targets()
    except SheetUpdaterError as e:
        print(f"Error: {e}")
        return 1

    while True:
        start_time = time.time()
        try:
            outcome = asyncio.run(run_once(settings))
            elapsed = time.time() - start_time
            print(f"--- Finished update: {outcome} (Took {elapsed:.2f}s) ---")
            status = 0
        except Exception as e:
            print(f"!!! Update failed: {e} !!!")
            status = 1

        if not args.loop:
            return status
        print(f"Next run in {args.interval_hours}h")
        time.sleep(args.interval_hours * 3600)


if __name__ == "__main__":
    sys.exit(main())
