from __future__ import annotations

import threading

import pytest
from eth_abi import encode as abi_encode
from eth_utils import to_checksum_address

from bridge_tvl.config import NATIVE_ASSET, BridgeConfig, FetchConfig
from bridge_tvl.errors import RangeFetchError
from bridge_tvl.events import (
    BRIDGE_EVENT_KINDS,
    ERC20_DEPOSIT_INITIATED,
    ERC20_WITHDRAWAL_FINALIZED,
    ETH_DEPOSIT_INITIATED,
    AdaptiveRangeFetcher,
)
from bridge_tvl.rpc import RpcError

TOKEN = "0x6b175474e89094c44da98b954eedeac495271d0f"
L2_TOKEN = "0xf74195bb8a5cf652411867c5c2c5b8c2a402be35"
SENDER = "0x1111111111111111111111111111111111111111"


def _topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:]


def _eth_log(block: int, amount: int) -> dict[str, object]:
    return {
        "blockNumber": hex(block),
        "topics": [ETH_DEPOSIT_INITIATED.topic0, _topic(SENDER), _topic(SENDER)],
        "data": "0x" + abi_encode(["uint256", "bytes"], [amount, b""]).hex(),
    }


def _erc20_log(kind, block: int, amount: int) -> dict[str, object]:
    return {
        "blockNumber": hex(block),
        "topics": [kind.topic0, _topic(TOKEN), _topic(L2_TOKEN), _topic(SENDER)],
        "data": "0x" + abi_encode(["address", "uint256", "bytes"], [SENDER, amount, b"\x01"]).hex(),
    }


class _FaultyNode:
    """Serves one native deposit per block and rejects windows over `limit` blocks."""

    def __init__(self, limit: int, last_block: int) -> None:
        self.limit = limit
        self.logs = {block: _eth_log(block, block + 1) for block in range(last_block + 1)}
        self.calls: list[tuple[int, int]] = []

    def get_logs(self, address: str, topic0: str, from_block: int, to_block: int) -> list[dict[str, object]]:
        self.calls.append((from_block, to_block))
        if to_block - from_block + 1 > self.limit:
            raise RpcError("query returned more than 10000 results")
        if topic0 != ETH_DEPOSIT_INITIATED.topic0:
            return []
        return [self.logs[block] for block in range(from_block, to_block + 1)]


def test_topic0_is_a_32_byte_hash() -> None:
    topics = {kind.topic0 for kind in BRIDGE_EVENT_KINDS}
    assert len(topics) == 4
    assert all(topic.startswith("0x") and len(topic) == 66 for topic in topics)


def test_fetch_all_returns_every_event_once_under_window_limit() -> None:
    node = _FaultyNode(limit=50, last_block=200)
    fetcher = AdaptiveRangeFetcher(node.get_logs, BridgeConfig(), sleeper=lambda _: None)

    events = fetcher.fetch_all(ETH_DEPOSIT_INITIATED, 0, 200)

    blocks = sorted(event.block_number for event in events)
    assert blocks == list(range(201))
    assert all(event.amount == event.block_number + 1 for event in events)
    assert all(event.asset == NATIVE_ASSET for event in events)
    assert node.calls[0] == (0, 200)


def test_fetch_all_grows_window_after_success() -> None:
    node = _FaultyNode(limit=1_000, last_block=400)
    fetcher = AdaptiveRangeFetcher(node.get_logs, BridgeConfig(), sleeper=lambda _: None)

    fetcher.fetch_all(ETH_DEPOSIT_INITIATED, 0, 400)

    assert node.calls == [(0, 400)]


def test_fetch_all_gives_up_after_repeated_failures_at_one_block() -> None:
    sleeps: list[float] = []

    def always_fail(address: str, topic0: str, from_block: int, to_block: int) -> list[dict[str, object]]:
        raise RpcError("upstream unavailable")

    fetcher = AdaptiveRangeFetcher(
        always_fail,
        BridgeConfig(),
        FetchConfig(max_failures=3, backoff_seconds=1.0),
        sleeper=sleeps.append,
    )

    with pytest.raises(RangeFetchError):
        fetcher.fetch_all(ETH_DEPOSIT_INITIATED, 0, 3)
    assert sleeps == [1.0, 2.0]


def test_erc20_events_decode_token_and_sign() -> None:
    deposit = ERC20_DEPOSIT_INITIATED.decode(_erc20_log(ERC20_DEPOSIT_INITIATED, 10, 5 * 10**30), NATIVE_ASSET)
    withdrawal = ERC20_WITHDRAWAL_FINALIZED.decode(
        _erc20_log(ERC20_WITHDRAWAL_FINALIZED, 12, 7), NATIVE_ASSET
    )

    assert deposit.asset == to_checksum_address(TOKEN)
    assert deposit.amount == 5 * 10**30
    assert deposit.block_number == 10
    assert withdrawal.asset == to_checksum_address(TOKEN)
    assert withdrawal.amount == -7


def test_fetch_bridge_events_sorts_by_block() -> None:
    logs = {
        ETH_DEPOSIT_INITIATED.topic0: [_eth_log(30, 1), _eth_log(5, 2)],
        ERC20_WITHDRAWAL_FINALIZED.topic0: [_erc20_log(ERC20_WITHDRAWAL_FINALIZED, 17, 3)],
    }

    def get_logs(address: str, topic0: str, from_block: int, to_block: int) -> list[dict[str, object]]:
        return logs.get(topic0, [])

    fetcher = AdaptiveRangeFetcher(get_logs, BridgeConfig(), sleeper=lambda _: None)
    events = fetcher.fetch_bridge_events(0, 100)

    assert [event.block_number for event in events] == [5, 17, 30]
    assert [event.amount for event in events] == [2, -3, 1]


def test_fetch_bridge_events_requests_every_kind_concurrently() -> None:
    # Each request waits until all four kinds are in flight at once.
    barrier = threading.Barrier(len(BRIDGE_EVENT_KINDS), timeout=5)
    seen: list[str] = []

    def get_logs(address: str, topic0: str, from_block: int, to_block: int) -> list[dict[str, object]]:
        seen.append(topic0)
        barrier.wait()
        if topic0 == ETH_DEPOSIT_INITIATED.topic0:
            return [_eth_log(8, 4)]
        return []

    fetcher = AdaptiveRangeFetcher(get_logs, BridgeConfig(), sleeper=lambda _: None)
    events = fetcher.fetch_bridge_events(0, 10)

    assert sorted(seen) == sorted(kind.topic0 for kind in BRIDGE_EVENT_KINDS)
    assert [(event.block_number, event.amount) for event in events] == [(8, 4)]
