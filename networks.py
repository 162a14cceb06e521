"""
Static registry of tracked networks and the selector fallback chains used to
read node statistics off the telemetry dashboard.

The dashboard markup shifts between releases, so every field carries several
locators in priority order; the scraper takes the first one that yields a
number.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

TAURUS_GENESIS = "0x295aeafca762a304d92ee1505548695091f6082d3f0aa4d092ac3cd6397a6c5e"
GEMINI_GENESIS = "0x0c121c75f4ef450f40619e1fca9d1e8e7fbabc42c895bc4790801e85d5a91c34"
MAINNET_GENESIS = "0x66455a580aabff303720aa83adbe6c44502922251c03ba73686d5245da9e21bd"

TELEMETRY_API_URL = "https://telemetry.subspace.network/api"

# Node-stats tab on the chain page
STATS_TAB_XPATH = '//*[@id="root"]/div/div[2]/div[1]/div[6]/div[3]'
CHAIN_SELECTED_CSS = ".Chains-chain-selected"
STATS_TABLE_CSS = "div.Chain-content-container table"


@dataclass(frozen=True)
class Locator:
    kind: str  # "css" or "xpath"
    query: str

    @property
    def selector(self) -> str:
        return f"{self.kind}={self.query}"


def css(query: str) -> Locator:
    return Locator("css", query)


def xpath(query: str) -> Locator:
    return Locator("xpath", query)


@dataclass(frozen=True)
class NetworkTarget:
    name: str
    dashboard_url: str
    sheet_range: str
    metric_source: str  # "rpc" or "api"
    metric_endpoint: str
    click_tab: bool = True


_IMPL_TABLE = "#root > div > div.Chain > div.Chain-content-container > div > div > div:nth-child(2) > table > tbody"
_OS_TABLE = "#root > div > div.Chain > div.Chain-content-container > div > div > div:nth-child(3) > table > tbody"
_IMPL_TABLE_XPATH = '//*[@id="root"]/div/div[2]/div[2]/div/div/div[2]/table/tbody'
_OS_TABLE_XPATH = '//*[@id="root"]/div/div[2]/div[2]/div/div/div[3]/table/tbody'


def _labelled_count(label: str) -> Locator:
    # Row located by its label cell, independent of table position
    return xpath(
        f'//tr[td[normalize-space()="{label}"]]/td[contains(@class, "Stats-count")]'
    )


FIELD_LOCATORS: Dict[str, Tuple[Locator, ...]] = {
    "node_count": (
        css(".Chains-chain-selected .Chains-node-count"),
        xpath('//*[contains(@class, "Chains-chain-selected")]//*[contains(@class, "Chains-node-count")]'),
    ),
    "subspace_node_count": (
        css(f"{_IMPL_TABLE} > tr:nth-child(1) > td.Stats-count"),
        xpath(f"{_IMPL_TABLE_XPATH}/tr[1]/td[2]"),
        _labelled_count("Subspace Node"),
    ),
    "space_acres_node_count": (
        css(f"{_IMPL_TABLE} > tr:nth-child(2) > td.Stats-count"),
        xpath(f"{_IMPL_TABLE_XPATH}/tr[2]/td[2]"),
        _labelled_count("Space Acres"),
    ),
    "linux_node_count": (
        xpath(f"{_OS_TABLE_XPATH}/tr[1]/td[2]"),
        css(f"{_OS_TABLE} > tr:nth-child(1) > td.Stats-count"),
        _labelled_count("Linux"),
    ),
    "windows_node_count": (
        xpath(f"{_OS_TABLE_XPATH}/tr[2]/td[2]"),
        css(f"{_OS_TABLE} > tr:nth-child(2) > td.Stats-count"),
        _labelled_count("Windows"),
    ),
    "macos_node_count": (
        xpath(f"{_OS_TABLE_XPATH}/tr[3]/td[2]"),
        css(f"{_OS_TABLE} > tr:nth-child(3) > td.Stats-count"),
        _labelled_count("macOS"),
    ),
}


NETWORKS: Dict[str, NetworkTarget] = {
    "taurus": NetworkTarget(
        name="taurus",
        dashboard_url=f"https://telemetry.subspace.foundation/#list/{TAURUS_GENESIS}",
        sheet_range="taurus",
        metric_source="rpc",
        metric_endpoint="wss://rpc-0.taurus.subspace.network/ws",
    ),
    "gemini": NetworkTarget(
        name="gemini",
        dashboard_url=f"https://telemetry.subspace.network/#list/{GEMINI_GENESIS}",
        sheet_range="gemini-3h",
        metric_source="rpc",
        metric_endpoint="wss://rpc-1.gemini-3h.subspace.network/ws",
    ),
    # Original single-sheet job: node count + API pledge on Sheet1
    "gemini-api": NetworkTarget(
        name="gemini-api",
        dashboard_url=f"https://telemetry.subspace.network/#list/{GEMINI_GENESIS}",
        sheet_range="Sheet1",
        metric_source="api",
        metric_endpoint=TELEMETRY_API_URL,
        click_tab=False,
    ),
    "mainnet": NetworkTarget(
        name="mainnet",
        dashboard_url=f"https://telemetry.subspace.foundation/#list/{MAINNET_GENESIS}",
        sheet_range="mainnet",
        metric_source="rpc",
        metric_endpoint="wss://rpc.mainnet.subspace.foundation/ws",
    ),
}


def get_targets(names: List[str]) -> List[NetworkTarget]:
    """Resolve registry names, keeping order and dropping duplicates."""
    targets = []
    seen = set()
    for name in names:
        key = name.strip().lower()
        if not key or key in seen:
            continue
        if key not in NETWORKS:
            raise KeyError(f"Unknown network '{name}'. Known: {', '.join(sorted(NETWORKS))}")
        seen.add(key)
        targets.append(NETWORKS[key])
    return targets
