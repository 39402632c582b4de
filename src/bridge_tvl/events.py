from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from eth_abi import decode as abi_decode
from eth_utils import keccak, to_checksum_address

from .config import BridgeConfig, FetchConfig
from .errors import RangeFetchError
from .rpc import RpcError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceEvent:
    asset: str
    amount: int
    block_number: int


@dataclass(frozen=True)
class EventKind:
    """A bridge event whose `_amount` moves assets in or out of custody.

    `data_types` lists the non-indexed arguments in order; `token_topic` is the
    topic position of the indexed `_l1Token`, or None for native transfers.
    """

    name: str
    signature: str
    data_types: tuple[str, ...]
    amount_index: int
    sign: int
    token_topic: int | None = None

    @property
    def topic0(self) -> str:
        return "0x" + keccak(text=self.signature).hex()

    def decode(self, log: dict[str, Any], native_asset: str) -> BalanceEvent:
        data = log.get("data") or "0x"
        values = abi_decode(list(self.data_types), bytes.fromhex(data[2:]))
        if self.token_topic is None:
            asset = native_asset
        else:
            asset = to_checksum_address("0x" + log["topics"][self.token_topic][-40:])
        block_number = log["blockNumber"]
        if isinstance(block_number, str):
            block_number = int(block_number, 16)
        return BalanceEvent(
            asset=asset,
            amount=self.sign * int(values[self.amount_index]),
            block_number=block_number,
        )


ETH_DEPOSIT_INITIATED = EventKind(
    name="ETHDepositInitiated",
    signature="ETHDepositInitiated(address,address,uint256,bytes)",
    data_types=("uint256", "bytes"),
    amount_index=0,
    sign=1,
)
ERC20_DEPOSIT_INITIATED = EventKind(
    name="ERC20DepositInitiated",
    signature="ERC20DepositInitiated(address,address,address,address,uint256,bytes)",
    data_types=("address", "uint256", "bytes"),
    amount_index=1,
    sign=1,
    token_topic=1,
)
ETH_WITHDRAWAL_FINALIZED = EventKind(
    name="ETHWithdrawalFinalized",
    signature="ETHWithdrawalFinalized(address,address,uint256,bytes)",
    data_types=("uint256", "bytes"),
    amount_index=0,
    sign=-1,
)
ERC20_WITHDRAWAL_FINALIZED = EventKind(
    name="ERC20WithdrawalFinalized",
    signature="ERC20WithdrawalFinalized(address,address,address,address,uint256,bytes)",
    data_types=("address", "uint256", "bytes"),
    amount_index=1,
    sign=-1,
    token_topic=1,
)

BRIDGE_EVENT_KINDS: tuple[EventKind, ...] = (
    ETH_DEPOSIT_INITIATED,
    ERC20_DEPOSIT_INITIATED,
    ETH_WITHDRAWAL_FINALIZED,
    ERC20_WITHDRAWAL_FINALIZED,
)

LogRequest = Callable[[str, str, int, int], list[dict[str, Any]]]


class AdaptiveRangeFetcher:
    """Fetches bridge logs, resizing the block window to what the node accepts.

    The first request asks for the whole range. A failed request halves the
    window and retries from the same block; a successful one doubles it.
    """

    def __init__(
        self,
        get_logs: LogRequest,
        bridge: BridgeConfig,
        config: FetchConfig | None = None,
        *,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self._get_logs = get_logs
        self.bridge = bridge
        self.config = config or FetchConfig()
        self._sleeper = sleeper

    def fetch_all(self, kind: EventKind, from_block: int, to_block: int) -> list[BalanceEvent]:
        events: list[BalanceEvent] = []
        start = from_block
        window = to_block - from_block + 1
        failures = 0
        while start <= to_block:
            end = min(start + window - 1, to_block)
            try:
                logs = self._get_logs(self.bridge.address, kind.topic0, start, end)
            except RpcError as exc:
                if window == 1:
                    failures += 1
                    if failures >= self.config.max_failures:
                        raise RangeFetchError(
                            f"{kind.name} logs at block {start} failed {failures} times: {exc}"
                        ) from exc
                    self._sleeper(self.config.backoff_seconds * failures)
                logger.debug("%s [%d, %d] failed (%s); shrinking window", kind.name, start, end, exc)
                window = max(window // 2, 1)
                continue
            failures = 0
            events.extend(kind.decode(log, self.bridge.native_asset) for log in logs)
            start = end + 1
            window *= 2
        logger.info("Fetched %d %s events in [%d, %d]", len(events), kind.name, from_block, to_block)
        return events

    def fetch_bridge_events(self, from_block: int, to_block: int) -> list[BalanceEvent]:
        events: list[BalanceEvent] = []
        with ThreadPoolExecutor(max_workers=len(BRIDGE_EVENT_KINDS)) as pool:
            for fetched in pool.map(lambda kind: self.fetch_all(kind, from_block, to_block), BRIDGE_EVENT_KINDS):
                events.extend(fetched)
        return sorted(events, key=lambda event: event.block_number)
