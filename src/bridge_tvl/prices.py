from __future__ import annotations

import bisect
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Protocol

import httpx

from .config import BridgeConfig, OracleConfig
from .errors import PriceFetchError, PriceUnavailableError

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


class SupportsGet(Protocol):
    def get(self, url: str, *, params: dict[str, Any], timeout: float) -> httpx.Response:
        ...


@dataclass(frozen=True)
class PricePoint:
    timestamp_ms: int
    price: Decimal

    @property
    def timestamp(self) -> int:
        return self.timestamp_ms // 1000


@dataclass(frozen=True)
class PriceSeries:
    asset: str
    points: tuple[PricePoint, ...]
    _stamps: tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_stamps", tuple(point.timestamp_ms for point in self.points))

    def price_at(self, timestamp: int) -> Decimal:
        """Latest price at or before `timestamp`, forward-filled past the last point."""
        index = bisect.bisect_right(self._stamps, timestamp * 1000)
        if index == 0:
            raise PriceUnavailableError(f"No price available for {self.asset} at {timestamp}")
        return self.points[index - 1].price

    def inside(self, start: int, end: int) -> list[PricePoint]:
        return [point for point in self.points if start * 1000 < point.timestamp_ms < end * 1000]


def parse_price_points(payload: Any) -> tuple[PricePoint, ...]:
    if not isinstance(payload, dict) or not isinstance(payload.get("prices"), list):
        raise PriceFetchError("Unexpected CoinGecko payload: missing prices list.")
    points: list[PricePoint] = []
    for item in payload["prices"]:
        if not isinstance(item, list) or len(item) < 2 or item[1] is None:
            raise PriceFetchError(f"Malformed CoinGecko price point: {item!r}")
        try:
            points.append(PricePoint(timestamp_ms=int(item[0]), price=Decimal(str(item[1]))))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise PriceFetchError(f"Malformed CoinGecko price point: {item!r}") from exc
    points.sort(key=lambda point: point.timestamp_ms)
    return tuple(points)


def lookback_start(start: int, end: int, config: OracleConfig) -> int:
    return min(start - config.pre_start_seconds, end - config.min_lookback_seconds)


class CoinGeckoClient:
    def __init__(
        self,
        config: OracleConfig,
        bridge: BridgeConfig,
        client: SupportsGet,
        *,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.bridge = bridge
        self._client = client
        self._sleeper = sleeper

    def range_url(self, platform: str, address: str) -> str:
        if address == self.bridge.native_asset:
            return f"{self.config.base_url}/coins/{self.bridge.native_coin_id}/market_chart/range"
        coin_id = self.bridge.coin_id_overrides.get(address)
        if coin_id is not None:
            return f"{self.config.base_url}/coins/{coin_id}/market_chart/range"
        return f"{self.config.base_url}/coins/{platform}/contract/{address}/market_chart/range"

    def get_price_range(
        self, platform: str, address: str, currency: str, from_unix: int, to_unix: int
    ) -> PriceSeries:
        url = self.range_url(platform, address)
        params = {"vs_currency": currency, "from": from_unix, "to": to_unix}
        last_error: Exception | None = None
        for attempt in range(1, self.config.retries + 1):
            try:
                response = self._client.get(url, params=params, timeout=self.config.timeout)
            except httpx.HTTPError as exc:
                last_error = exc
            else:
                if response.status_code not in TRANSIENT_STATUSES:
                    if response.status_code != 200:
                        raise PriceFetchError(
                            f"Failed to fetch CoinGecko prices for {url} (HTTP {response.status_code})"
                        )
                    try:
                        payload = response.json()
                    except ValueError as exc:
                        raise PriceFetchError(f"CoinGecko returned invalid JSON for {url}") from exc
                    points = parse_price_points(payload)
                    logger.debug("Fetched %d price points for %s", len(points), address)
                    return PriceSeries(asset=address, points=points)
                last_error = PriceFetchError(f"Transient HTTP status {response.status_code} from {url}")
            if attempt < self.config.retries:
                logger.warning("CoinGecko request for %s failed (%s); retrying", address, last_error)
                self._sleeper(self.config.backoff_seconds * attempt)
        raise PriceFetchError(f"Failed to fetch CoinGecko prices for {url}: {last_error}") from last_error
