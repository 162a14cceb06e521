"""
Headless Browser Scraper for the Subspace Telemetry Dashboard

Uses Playwright to render the telemetry single-page app and read node
statistics for each tracked network. Every field is read through an ordered
chain of CSS/XPath locators; the first one that yields a number wins.
"""

import argparse
import asyncio
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from networks import (
    CHAIN_SELECTED_CSS,
    FIELD_LOCATORS,
    NETWORKS,
    STATS_TAB_XPATH,
    STATS_TABLE_CSS,
    Locator,
    NetworkTarget,
    get_targets,
)
from utils import parse_count, short_error

USER_AGENT = 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36'


@dataclass(frozen=True)
class ScrapeOptions:
    nav_timeout_ms: int = 60000
    selector_timeout_ms: int = 10000
    click_attempts: int = 3
    click_backoff: float = 2.0


@dataclass(frozen=True)
class ScrapedStats:
    node_count: Optional[int] = None
    subspace_node_count: Optional[int] = None
    space_acres_node_count: Optional[int] = None
    linux_node_count: Optional[int] = None
    windows_node_count: Optional[int] = None
    macos_node_count: Optional[int] = None


@asynccontextmanager
async def browser_session(headless=True):
    """Launch Chromium and close it on every exit path."""
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless)
        try:
            yield browser
        finally:
            await browser.close()


@asynccontextmanager
async def open_page(browser):
    """One isolated context + page per network."""
    context = await browser.new_context(user_agent=USER_AGENT)
    try:
        page = await context.new_page()
        yield page
    finally:
        await context.close()


async def wait_for(page, selector, timeout_ms, label=""):
    """Wait for a selector, returning False instead of raising on timeout."""
    try:
        await page.wait_for_selector(selector, timeout=timeout_ms)
        return True
    except PlaywrightError:
        print(f"{label}: Timeout waiting for selector: {selector}")
        return False


async def click_stats_tab(page, xpath=STATS_TAB_XPATH, attempts=3, backoff=2.0, label=""):
    for i in range(attempts):
        try:
            handle = await page.query_selector(f"xpath={xpath}")
            if handle is None:
                raise LookupError("stats tab not found")
            await handle.click()
            return True
        except (PlaywrightError, LookupError) as e:
            print(f"{label}: Click attempt {i + 1} failed ({short_error(e)})")
            if i < attempts - 1:
                await asyncio.sleep(backoff)
    return False


async def resolve_field(page, locators: Sequence[Locator]) -> Optional[int]:
    """Return the first locator's value that parses as a count, else None."""
    for locator in locators:
        try:
            handle = await page.query_selector(locator.selector)
            if handle is None:
                continue
            text = await handle.text_content()
        except PlaywrightError:
            continue
        value = parse_count(text)
        if value is not None:
            return value
    return None


async def extract_stats(page, field_locators: Dict[str, Tuple[Locator, ...]] = FIELD_LOCATORS) -> ScrapedStats:
    values = {}
    for field_name, locators in field_locators.items():
        values[field_name] = await resolve_field(page, locators)
    return ScrapedStats(**values)


async def scrape_network(page, target: NetworkTarget, options: ScrapeOptions = ScrapeOptions()) -> ScrapedStats:
    """
    Navigate to a network's dashboard and extract its node statistics.

    Navigation timeouts, missing selectors and a failed tab click are logged
    and tolerated; the affected fields simply come back as None.
    """
    name = target.name
    print(f"Navigating to {name} page: {target.dashboard_url}")
    try:
        await page.goto(target.dashboard_url, timeout=options.nav_timeout_ms, wait_until="networkidle")
        print(f"{name}: Initial page load complete")
    except PlaywrightError as e:
        print(f"{name}: Page load did not settle ({short_error(e)}), extracting anyway")

    if not await wait_for(page, CHAIN_SELECTED_CSS, options.selector_timeout_ms, name):
        print(f"{name}: Chain selector not found after waiting")
    await wait_for(page, FIELD_LOCATORS["node_count"][0].selector, options.selector_timeout_ms, name)

    if target.click_tab:
        clicked = await click_stats_tab(
            page,
            attempts=options.click_attempts,
            backoff=options.click_backoff,
            label=name,
        )
        if clicked:
            await wait_for(page, STATS_TABLE_CSS, options.selector_timeout_ms, name)
        else:
            print(f"{name}: Failed to click the stats tab after {options.click_attempts} attempts")

    stats = await extract_stats(page)
    print(f"{name} stats extracted: {asdict(stats)}")
    return stats


async def scrape_targets(targets, options=ScrapeOptions(), headless=True):
    """Scrape several dashboards concurrently; failures come back as exceptions."""

    async def one(browser, target):
        async with open_page(browser) as page:
            return await scrape_network(page, target, options)

    async with browser_session(headless=headless) as browser:
        results = await asyncio.gather(*(one(browser, t) for t in targets), return_exceptions=True)
    return dict(zip((t.name for t in targets), results))


async def main():
    p = argparse.ArgumentParser(description="Scrape telemetry dashboard stats without writing anywhere")
    p.add_argument("networks", nargs="*", default=["taurus", "gemini"], help=f"any of: {', '.join(NETWORKS)}")
    p.add_argument("--headed", action="store_true", help="show the browser window")
    args = p.parse_args()

    targets = get_targets(args.networks)
    print(f"Scraping {len(targets)} network(s)...")
    results = await scrape_targets(targets, headless=not args.headed)
    for name, result in results.items():
        if isinstance(result, Exception):
            print(f"✗ Failed {name}: {short_error(result)}")
        else:
            print(f"✓ {name}: {asdict(result)}")


if __name__ == "__main__":
    asyncio.run(main())
