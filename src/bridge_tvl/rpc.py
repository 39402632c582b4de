from __future__ import annotations

import itertools
import logging
from typing import Any, Protocol

import httpx
from eth_abi import decode as abi_decode
from eth_utils import keccak

from .blocks import Block
from .config import ChainConfig

logger = logging.getLogger(__name__)

DECIMALS_SELECTOR = "0x" + keccak(text="decimals()")[:4].hex()


class SupportsPost(Protocol):
    def post(self, url: str, *, json: Any, timeout: float) -> httpx.Response:
        ...


class RpcError(RuntimeError):
    pass


def _to_int(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class ChainClient:
    """Minimal JSON-RPC client for the calls the TVL pipeline needs."""

    def __init__(self, config: ChainConfig, client: SupportsPost) -> None:
        self.config = config
        self._client = client
        self._ids = itertools.count(1)

    def call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._client.post(self.config.rpc_url, json=payload, timeout=self.config.timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise RpcError(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise RpcError(f"{method} returned invalid JSON") from exc

        if not isinstance(data, dict):
            raise RpcError(f"{method} returned unexpected payload type {type(data).__name__}")
        if data.get("error"):
            raise RpcError(f"{method} failed: {data['error']}")
        return data.get("result")

    def get_block(self, identifier: int | str) -> Block:
        tag = identifier if isinstance(identifier, str) else hex(identifier)
        result = self.call("eth_getBlockByNumber", [tag, False])
        if not isinstance(result, dict):
            raise RpcError(f"Block {identifier} not found")
        return Block(number=_to_int(result["number"]), timestamp=_to_int(result["timestamp"]))

    def get_logs(self, address: str, topic0: str, from_block: int, to_block: int) -> list[dict[str, Any]]:
        result = self.call(
            "eth_getLogs",
            [
                {
                    "address": address,
                    "fromBlock": hex(from_block),
                    "toBlock": hex(to_block),
                    "topics": [topic0],
                }
            ],
        )
        if not isinstance(result, list):
            raise RpcError("eth_getLogs returned unexpected payload")
        logger.debug("eth_getLogs %s [%d, %d] -> %d logs", topic0[:10], from_block, to_block, len(result))
        return result

    def decimals(self, token: str) -> int:
        result = self.call("eth_call", [{"to": token, "data": DECIMALS_SELECTOR}, "latest"])
        if not isinstance(result, str) or len(result) < 66:
            raise RpcError(f"decimals() call on {token} returned {result!r}")
        (value,) = abi_decode(["uint8"], bytes.fromhex(result[2:66]))
        return int(value)
