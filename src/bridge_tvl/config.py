from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .errors import TvlError

NATIVE_ASSET = "0x0000000000000000000000000000000000000000"
SECONDS_PER_DAY = 86_400
SECONDS_PER_HOUR = 3_600


@dataclass(frozen=True)
class BridgeConfig:
    address: str = "0xdc1664458d2f0B6090bEa60A8793A4E66c2F1c00"
    # No bridge events exist before the L1StandardBridge deployment.
    deployment_block: int = 13_012_048
    native_asset: str = NATIVE_ASSET
    native_decimals: int = 18
    platform: str = "ethereum"
    native_coin_id: str = "ethereum"
    coin_id_overrides: dict[str, str] = field(
        default_factory=lambda: {
            "0xa47c8bf37f92aBed4A126BDA807A7b7498661acD": "terrausd",
            "0xB8c77482e45F1F44dE1745F52C74426C631bDD52": "binancecoin",
        }
    )


@dataclass(frozen=True)
class ChainConfig:
    rpc_url: str
    chain_id: int = 1
    timeout: float = 30.0


@dataclass(frozen=True)
class OracleConfig:
    base_url: str = "https://api.coingecko.com/api/v3"
    timeout: float = 30.0
    retries: int = 3
    backoff_seconds: float = 1.5
    # CoinGecko only serves hourly points for ranges of at least 30 days.
    min_lookback_seconds: int = 30 * SECONDS_PER_DAY
    pre_start_seconds: int = SECONDS_PER_DAY


@dataclass(frozen=True)
class FetchConfig:
    max_failures: int = 8
    backoff_seconds: float = 2.0


@dataclass(frozen=True)
class Settings:
    chain: ChainConfig
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    workers: int = 8


def load_settings(rpc_url: str | None = None, env_file: str | None = None) -> Settings:
    load_dotenv(env_file)
    url = rpc_url or os.getenv("NODE_URL_CHAIN_1", "").strip()
    if not url:
        raise TvlError("Missing chain node URL: set NODE_URL_CHAIN_1 or pass --rpc-url.")
    try:
        chain = ChainConfig(
            rpc_url=url,
            chain_id=int(os.getenv("CHAIN_ID", "1")),
            timeout=float(os.getenv("NODE_TIMEOUT", "30")),
        )
    except ValueError as exc:
        raise TvlError(f"Invalid CHAIN_ID or NODE_TIMEOUT: {exc}") from exc
    oracle = OracleConfig(base_url=os.getenv("COINGECKO_BASE_URL", OracleConfig.base_url).rstrip("/"))
    return Settings(chain=chain, oracle=oracle)


def default_interval(start: int, end: int) -> int:
    return SECONDS_PER_DAY if end - start > SECONDS_PER_DAY else SECONDS_PER_HOUR
