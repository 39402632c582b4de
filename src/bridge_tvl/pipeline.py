from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Protocol, TypeVar

from .balances import (
    BalanceSample,
    add_first_balance,
    reconstruct_balances,
    resolve_timestamps,
    scale_balances,
)
from .blocks import BlockLocator
from .config import Settings
from .errors import RangeError
from .events import AdaptiveRangeFetcher
from .prices import PriceSeries, lookback_start
from .twap import interval_twaps, twap
from .values import ValuePoint, add_price_updates, apply_prices, total_series

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DecimalsSource(Protocol):
    def decimals(self, token: str) -> int:
        ...


class PriceOracle(Protocol):
    def get_price_range(
        self, platform: str, address: str, currency: str, from_unix: int, to_unix: int
    ) -> PriceSeries:
        ...


@dataclass(frozen=True)
class AssetTwap:
    intervals: dict[int, Decimal]
    full: Decimal


@dataclass(frozen=True)
class TvlReport:
    currency: str
    start: int
    end: int
    interval: int
    from_block: int
    to_block: int
    event_count: int
    total: list[ValuePoint]
    interval_twaps: dict[int, Decimal]
    twap: Decimal
    asset_twaps: dict[str, AssetTwap]


class TvlPipeline:
    def __init__(
        self,
        settings: Settings,
        locator: BlockLocator,
        fetcher: AdaptiveRangeFetcher,
        chain: DecimalsSource,
        oracle: PriceOracle,
    ) -> None:
        self.settings = settings
        self.locator = locator
        self.fetcher = fetcher
        self.chain = chain
        self.oracle = oracle

    def run(self, start: int, end: int, interval: int, currency: str = "usd") -> TvlReport:
        if start > end:
            raise RangeError("--from timestamp cannot be higher than --to timestamp")
        bridge = self.settings.bridge

        from_block = self.locator.locate(start).number
        to_block = self.locator.locate(end).number
        if to_block < bridge.deployment_block:
            raise RangeError("--to timestamp cannot be earlier than the bridge deployment")
        logger.info("Analysing blocks %d to %d", from_block, to_block)

        events = self.fetcher.fetch_bridge_events(bridge.deployment_block, to_block)
        balances = reconstruct_balances(events)
        logger.info("Reconstructed balances for %d assets from %d events", len(balances), len(events))

        decimals = self._map_concurrently(self._decimals, list(balances))
        for asset, samples in balances.items():
            scale_balances(samples, decimals[asset])
            resolve_timestamps(samples, self.locator, from_block)
            add_first_balance(samples, start, BalanceSample.zero(start))

        price_from = lookback_start(start, end, self.settings.oracle)
        prices = self._map_concurrently(
            lambda asset: self.oracle.get_price_range(bridge.platform, asset, currency, price_from, end),
            list(balances),
        )
        for asset, samples in balances.items():
            apply_prices(samples, prices[asset])
            add_price_updates(samples, prices[asset], start, end)

        total = total_series(balances, start)

        asset_twaps: dict[str, AssetTwap] = {}
        for asset, samples in balances.items():
            asset_twaps[asset] = AssetTwap(
                intervals=interval_twaps(samples, start, end, interval, BalanceSample.zero),
                full=twap(samples, start, end) if end > start else Decimal(0),
            )
        total_intervals = interval_twaps(total, start, end, interval, ValuePoint.zero)
        full = twap(total, start, end) if end > start else Decimal(0)

        return TvlReport(
            currency=currency,
            start=start,
            end=end,
            interval=interval,
            from_block=from_block,
            to_block=to_block,
            event_count=len(events),
            total=total,
            interval_twaps=total_intervals,
            twap=full,
            asset_twaps=asset_twaps,
        )

    def _decimals(self, asset: str) -> int:
        if asset == self.settings.bridge.native_asset:
            return self.settings.bridge.native_decimals
        return self.chain.decimals(asset)

    def _map_concurrently(self, func: Callable[[str], T], assets: list[str]) -> dict[str, T]:
        if not assets:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.settings.workers, len(assets))) as pool:
            return dict(zip(assets, pool.map(func, assets)))
