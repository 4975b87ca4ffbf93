"""Async Bitcoin Core JSON-RPC and mempool.space fee client backing the pollers."""

import itertools
import json
import logging
from typing import Any

import httpx

from brc20_watcher.core.errors import FetchError
from brc20_watcher.core.types import BlockStats, ChainState, FeeEstimate

DEFAULT_FEE_API_URL = "https://mempool.space/api/v1/fees/recommended"
_DEFAULT_TIMEOUT_S = 10.0
_MAX_CONNECTIONS = 10

logger = logging.getLogger(__name__)


def _build_chain_state(result: Any) -> ChainState | None:
    if not isinstance(result, dict):
        return None

    try:
        return ChainState(
            height=int(result["blocks"]),
            chain=str(result["chain"]),
            headers=int(result["headers"]),
            best_block_hash=str(result["bestblockhash"]),
            difficulty=float(result["difficulty"]),
            verification_progress=float(result["verificationprogress"]),
            initial_block_download=bool(result.get("initialblockdownload", False)),
            size_on_disk=int(result.get("size_on_disk", 0)),
            pruned=bool(result.get("pruned", False)),
        )
    except (KeyError, TypeError, ValueError):
        return None


def _build_block_stats(result: Any) -> BlockStats | None:
    if not isinstance(result, dict):
        return None

    try:
        return BlockStats(
            height=int(result["height"]),
            block_hash=str(result["blockhash"]),
            time=int(result["time"]),
            txs=int(result["txs"]),
            ins=int(result["ins"]),
            outs=int(result["outs"]),
            total_size=int(result["total_size"]),
            total_weight=int(result["total_weight"]),
            total_fee=int(result["totalfee"]),
            avg_fee=int(result["avgfee"]),
            avg_fee_rate=int(result["avgfeerate"]),
            min_fee_rate=int(result["minfeerate"]),
            max_fee_rate=int(result["maxfeerate"]),
            median_fee=int(result["medianfee"]),
            subsidy=int(result["subsidy"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


def _build_fee_estimate(payload: Any) -> FeeEstimate | None:
    if not isinstance(payload, dict):
        return None

    try:
        estimate = FeeEstimate(
            fastest_fee=int(payload["fastestFee"]),
            half_hour_fee=int(payload["halfHourFee"]),
            hour_fee=int(payload["hourFee"]),
            economy_fee=int(payload["economyFee"]),
            minimum_fee=int(payload["minimumFee"]),
        )
    except (KeyError, TypeError, ValueError):
        return None

    if min(
        estimate.fastest_fee,
        estimate.half_hour_fee,
        estimate.hour_fee,
        estimate.economy_fee,
        estimate.minimum_fee,
    ) < 0:
        return None
    return estimate


class BitcoinClient:
    """DataSource over one shared `httpx.AsyncClient`, safe for concurrent pollers."""

    def __init__(
        self,
        rpc_url: str,
        fee_api_url: str = DEFAULT_FEE_API_URL,
        auth: tuple[str, str] | None = None,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.fee_api_url = fee_api_url
        self._request_ids = itertools.count(1)
        self._client = httpx.AsyncClient(
            auth=auth,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=_MAX_CONNECTIONS),
            transport=transport,
        )

    async def __aenter__(self) -> "BitcoinClient":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_chain_state(self) -> ChainState:
        result = await self._call("getblockchaininfo")
        chain_state = _build_chain_state(result)
        if chain_state is None:
            raise FetchError("getblockchaininfo", "malformed result")
        return chain_state

    async def fetch_block_stats(self, height: int) -> BlockStats:
        result = await self._call("getblockstats", [height])
        block_stats = _build_block_stats(result)
        if block_stats is None:
            raise FetchError("getblockstats", "malformed result")
        return block_stats

    async def fetch_fee_estimate(self) -> FeeEstimate:
        payload = await self._get_json("fee_estimate", self.fee_api_url)
        estimate = _build_fee_estimate(payload)
        if estimate is None:
            raise FetchError("fee_estimate", "malformed payload")
        return estimate

    async def _call(self, method: str, params: list[Any] | None = None) -> Any:
        """Issue one JSON-RPC request and return its `result`."""

        body = {
            "jsonrpc": "1.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params or [],
        }
        try:
            response = await self._client.post(self.rpc_url, json=body)
        except httpx.HTTPError as exc:
            raise FetchError(method, f"transport error: {exc}") from exc

        # bitcoind answers RPC errors with HTTP 500 and a JSON error body
        try:
            envelope = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            envelope = None

        if isinstance(envelope, dict) and envelope.get("error") is not None:
            raise FetchError(method, f"rpc error: {envelope['error']}")
        if response.is_error:
            raise FetchError(method, f"http status {response.status_code}")
        if not isinstance(envelope, dict) or "result" not in envelope:
            raise FetchError(method, "invalid json-rpc response")

        logger.debug("rpc_call_ok", extra={"method": method, "params": body["params"]})
        return envelope["result"]

    async def _get_json(self, operation: str, url: str) -> Any:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchError(operation, f"http status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(operation, f"transport error: {exc}") from exc

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise FetchError(operation, "invalid json") from exc
