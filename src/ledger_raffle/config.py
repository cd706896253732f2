from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

from .project_constants import DEFAULT_BATCH_SIZE
from .rest import MAINNET_BASE_URL, TESTNET_BASE_URL

T = TypeVar("T")

NETWORK_BASE_URLS = {
    "mainnet": MAINNET_BASE_URL,
    "testnet": TESTNET_BASE_URL,
}


def _env(name: str, default: T, parse: Callable[[str], T]) -> T:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return parse(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid value for {name}: {raw!r} ({e})")


@dataclass(frozen=True)
class Settings:
    ledger_api_url: str
    network: str = "testnet"
    timeout_s: float = 30.0
    max_retries: int = 3
    retry_delay_s: float = 1.0
    tracker_batch_size: int = DEFAULT_BATCH_SIZE
    tracker_interval_s: float = 5.0
    ordering_interval_s: float = 5.0
    intake_interval_s: float = 5.0
    scanner_fetch_limit: int = 100

    @staticmethod
    def from_env(
        api_url_override: Optional[str] = None,
        network_override: Optional[str] = None,
    ) -> "Settings":
        load_dotenv()

        network = network_override or os.getenv("LEDGER_NETWORK", "").strip() or "testnet"

        # If the caller provides a URL, trust it; else derive it from the network.
        api_url = api_url_override or os.getenv("LEDGER_API_URL", "").strip()
        if not api_url:
            if network not in NETWORK_BASE_URLS:
                raise RuntimeError(
                    f"Unknown LEDGER_NETWORK {network!r} and no LEDGER_API_URL set. "
                    "Put it in .env or export it."
                )
            api_url = NETWORK_BASE_URLS[network]

        return Settings(
            ledger_api_url=api_url,
            network=network,
            timeout_s=_env("LEDGER_TIMEOUT_S", 30.0, float),
            max_retries=_env("LEDGER_MAX_RETRIES", 3, int),
            retry_delay_s=_env("LEDGER_RETRY_DELAY_S", 1.0, float),
            tracker_batch_size=_env("TRACKER_BATCH_SIZE", DEFAULT_BATCH_SIZE, int),
            tracker_interval_s=_env("TRACKER_INTERVAL_S", 5.0, float),
            ordering_interval_s=_env("ORDERING_INTERVAL_S", 5.0, float),
            intake_interval_s=_env("INTAKE_INTERVAL_S", 5.0, float),
            scanner_fetch_limit=_env("SCANNER_FETCH_LIMIT", 100, int),
        )
