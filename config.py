"""
Run configuration, read from the environment (and an optional dotenv file).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from networks import NetworkTarget, get_targets
from utils import ConfigError

DEFAULT_NETWORKS = "taurus,gemini"


@dataclass
class Settings:
    client_email: str
    private_key: str
    spreadsheet_id: str
    websocket_url: Optional[str] = None
    networks: List[str] = field(default_factory=lambda: DEFAULT_NETWORKS.split(","))
    attempts: int = 3
    retry_delay: float = 5.0
    run_timeout: float = 540.0
    headless: bool = True
    require_node_count: bool = False
    min_update_interval: float = 0.0

    def targets(self) -> List[NetworkTarget]:
        try:
            return get_targets(self.networks)
        except KeyError as e:
            raise ConfigError(str(e).strip("'\"")) from e


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _number(env, name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'")


def load_settings(env_file: Optional[str] = ".env", environ=None) -> Settings:
    """
    Build Settings from environment variables.

    The service-account private key is usually stored with escaped newlines
    (\\n); those are turned back into real newlines here.
    """
    if environ is None:
        if env_file:
            load_dotenv(env_file)
        environ = os.environ

    missing = [
        name
        for name in ("GOOGLE_CLOUD_CLIENT_EMAIL", "GOOGLE_CLOUD_PRIVATE_KEY", "GOOGLE_SHEET_ID")
        if not environ.get(name)
    ]
    if missing:
        raise ConfigError(f"Environment variable(s) not set: {', '.join(missing)}")

    networks = [n.strip() for n in environ.get("NETWORKS", DEFAULT_NETWORKS).split(",") if n.strip()]

    settings = Settings(
        client_email=environ["GOOGLE_CLOUD_CLIENT_EMAIL"],
        private_key=environ["GOOGLE_CLOUD_PRIVATE_KEY"].replace("\\n", "\n"),
        spreadsheet_id=environ["GOOGLE_SHEET_ID"],
        websocket_url=environ.get("TELEMETRY_WEBSOCKET_URL") or None,
        networks=networks,
        attempts=_number(environ, "UPDATE_ATTEMPTS", 3, int),
        retry_delay=_number(environ, "RETRY_DELAY_SECONDS", 5.0, float),
        run_timeout=_number(environ, "RUN_TIMEOUT_SECONDS", 540.0, float),
        headless=_flag(environ.get("HEADLESS", "true")),
        require_node_count=_flag(environ.get("REQUIRE_NODE_COUNT", "false")),
        min_update_interval=_number(environ, "MIN_UPDATE_INTERVAL_MINUTES", 0.0, float),
    )
    # Fail early on unknown network names
    settings.targets()
    return settings
