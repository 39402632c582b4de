"""Time-weighted TVL of bridge custody contracts."""

from .balances import BalanceSample, add_first_balance, reconstruct_balances, scale_amount
from .blocks import Block, BlockLocator
from .config import BridgeConfig, ChainConfig, FetchConfig, OracleConfig, Settings, load_settings
from .errors import (
    GenesisError,
    PriceFetchError,
    PriceUnavailableError,
    RangeError,
    RangeFetchError,
    TvlError,
)
from .events import BRIDGE_EVENT_KINDS, AdaptiveRangeFetcher, BalanceEvent, EventKind
from .pipeline import AssetTwap, TvlPipeline, TvlReport
from .prices import CoinGeckoClient, PricePoint, PriceSeries
from .rpc import ChainClient, RpcError
from .twap import interval_twaps, twap
from .values import ValuePoint, add_price_updates, apply_prices, total_series

__all__ = [
    "AdaptiveRangeFetcher",
    "AssetTwap",
    "BRIDGE_EVENT_KINDS",
    "BalanceEvent",
    "BalanceSample",
    "Block",
    "BlockLocator",
    "BridgeConfig",
    "ChainClient",
    "ChainConfig",
    "CoinGeckoClient",
    "EventKind",
    "FetchConfig",
    "GenesisError",
    "OracleConfig",
    "PriceFetchError",
    "PricePoint",
    "PriceSeries",
    "PriceUnavailableError",
    "RangeError",
    "RangeFetchError",
    "RpcError",
    "Settings",
    "TvlError",
    "TvlPipeline",
    "TvlReport",
    "ValuePoint",
    "add_first_balance",
    "add_price_updates",
    "apply_prices",
    "interval_twaps",
    "load_settings",
    "reconstruct_balances",
    "scale_amount",
    "total_series",
    "twap",
]
