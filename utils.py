"""
Shared utilities for the telemetry sheet updater.
Provides SSL context handling, count parsing, timestamps and the retry loop
used by the metric fetcher and the workflow runner.
"""

import asyncio
import os
import re
import ssl
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional


class SheetUpdaterError(Exception):
    """Base class for errors raised by the updater."""


class ConfigError(SheetUpdaterError):
    pass


class NodeCountMissing(SheetUpdaterError):
    pass


class MetricFetchError(SheetUpdaterError):
    pass


class UpdateFailed(SheetUpdaterError):
    def __init__(self, failed: dict):
        self.failed = failed
        names = ", ".join(sorted(failed))
        super().__init__(f"Update failed for: {names}")


class RunTimeout(SheetUpdaterError):
    pass


class SheetWriteFailed(SheetUpdaterError):
    """The append call itself failed; the row may or may not have landed."""


class FeedTimeout(SheetUpdaterError):
    pass


COUNT_RE = re.compile(r"^\d[\d,]*")


def get_ssl_context() -> Optional[ssl.SSLContext]:
    """
    SSL context for the telemetry API request.

    Verification stays on unless INSECURE_SSL is set, which is meant for hosts
    behind an intercepting proxy whose CA is not in the system store.

    Returns:
        Unverified SSLContext when opted out, otherwise None (urllib defaults)
    """
    if os.environ.get("INSECURE_SSL", "").lower() not in ("1", "true", "yes"):
        return None
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def parse_count(text: Optional[str]) -> Optional[int]:
    """
    Parse the leading integer of a dashboard cell, parseInt style.

    "42" -> 42, "1,234 nodes" -> 1234, "" / "N/A" / None -> None.
    """
    if not isinstance(text, str):
        return None
    match = COUNT_RE.match(text.strip())
    if not match:
        return None
    return int(match.group(0).replace(",", ""))


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a timestamp cell written by utc_timestamp (or a plain ISO date)."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def short_error(e: BaseException, limit: int = 200) -> str:
    msg = str(e) or e.__class__.__name__
    return msg[:limit]


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    attempts: int = 3,
    delay: float = 2.0,
    label: str = "operation",
) -> Any:
    """
    Await func() up to `attempts` times, sleeping `delay` seconds between tries.

    Args:
        func: zero-argument coroutine factory
        attempts: maximum number of calls (at least 1)
        delay: fixed backoff in seconds
        label: name used in log lines

    Returns:
        Whatever the first successful call returns.

    Raises:
        The exception of the last attempt once attempts are exhausted.
    """
    attempts = max(1, attempts)
    for i in range(attempts):
        try:
            return await func()
        except Exception as e:
            if i == attempts - 1:
                print(f"{label}: attempt {i + 1}/{attempts} failed ({short_error(e)}). Giving up.")
                raise
            print(f"{label}: attempt {i + 1}/{attempts} failed ({short_error(e)}). Retrying in {delay}s...")
            await asyncio.sleep(delay)
