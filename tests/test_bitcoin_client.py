"""Bitcoin RPC / fee API client parsing and error mapping over a mock transport."""

import json
from typing import Any, Callable

import httpx
import pytest

from brc20_watcher.core.errors import FetchError
from brc20_watcher.source.bitcoin_client import BitcoinClient

_RPC_URL = "http://node.test:8332"
_FEE_URL = "https://fees.test/api/v1/fees/recommended"

_BLOCKCHAIN_INFO = {
    "chain": "main",
    "blocks": 812345,
    "headers": 812346,
    "bestblockhash": "0000000000000000000123",
    "difficulty": 57119871304635.31,
    "mediantime": 1697000000,
    "verificationprogress": 0.99999,
    "initialblockdownload": False,
    "chainwork": "00",
    "size_on_disk": 600000000000,
    "pruned": False,
    "warnings": "",
}

_BLOCK_STATS = {
    "avgfee": 2500,
    "avgfeerate": 12,
    "avgtxsize": 400,
    "blockhash": "0000000000000000000456",
    "height": 812345,
    "ins": 7000,
    "maxfee": 900000,
    "maxfeerate": 300,
    "medianfee": 1800,
    "minfee": 200,
    "minfeerate": 1,
    "outs": 9000,
    "subsidy": 625000000,
    "time": 1697000500,
    "total_size": 1600000,
    "total_weight": 3990000,
    "totalfee": 9000000,
    "txs": 3600,
}

_FEES = {"fastestFee": 25, "halfHourFee": 20, "hourFee": 15, "economyFee": 8, "minimumFee": 4}


def _client(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> BitcoinClient:
    return BitcoinClient(
        _RPC_URL,
        fee_api_url=_FEE_URL,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _rpc_result(result: Any) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={"result": result, "error": None, "id": body["id"]})

    return handler


@pytest.mark.asyncio
async def test_fetch_chain_state_posts_getblockchaininfo() -> None:
    seen: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        assert request.method == "POST"
        assert str(request.url) == _RPC_URL
        return httpx.Response(200, json={"result": _BLOCKCHAIN_INFO, "error": None, "id": body["id"]})

    async with _client(handler) as client:
        chain_state = await client.fetch_chain_state()

    assert seen[0]["method"] == "getblockchaininfo"
    assert seen[0]["params"] == []
    assert chain_state.height == 812345
    assert chain_state.headers == 812346
    assert chain_state.chain == "main"
    assert chain_state.verification_progress == pytest.approx(0.99999)


@pytest.mark.asyncio
async def test_fetch_block_stats_passes_height_param() -> None:
    seen: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(200, json={"result": _BLOCK_STATS, "error": None, "id": body["id"]})

    async with _client(handler) as client:
        block_stats = await client.fetch_block_stats(812345)

    assert seen[0]["method"] == "getblockstats"
    assert seen[0]["params"] == [812345]
    assert block_stats.height == 812345
    assert block_stats.total_fee == 9000000
    assert block_stats.median_fee == 1800
    assert block_stats.txs == 3600


@pytest.mark.asyncio
async def test_request_ids_increase_per_call() -> None:
    ids: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        ids.append(body["id"])
        return httpx.Response(200, json={"result": _BLOCKCHAIN_INFO, "error": None, "id": body["id"]})

    async with _client(handler) as client:
        await client.fetch_chain_state()
        await client.fetch_chain_state()

    assert ids == [1, 2]


@pytest.mark.asyncio
async def test_basic_auth_is_sent_when_configured() -> None:
    headers: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        headers.append(request.headers.get("authorization", ""))
        return _rpc_result(_BLOCKCHAIN_INFO)(request)

    async with _client(handler, auth=("rpcuser", "rpcpass")) as client:
        await client.fetch_chain_state()

    assert headers[0].startswith("Basic ")


@pytest.mark.asyncio
async def test_rpc_error_is_a_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        error = {"code": -8, "message": "Target block height 9999999 after current tip"}
        return httpx.Response(500, json={"result": None, "error": error, "id": 1})

    async with _client(handler) as client:
        with pytest.raises(FetchError) as excinfo:
            await client.fetch_block_stats(9999999)

    assert excinfo.value.operation == "getblockstats"
    assert "rpc error" in str(excinfo.value)


@pytest.mark.asyncio
async def test_http_error_without_json_is_a_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="Unauthorized")

    async with _client(handler) as client:
        with pytest.raises(FetchError, match="http status 401"):
            await client.fetch_chain_state()


@pytest.mark.asyncio
async def test_malformed_result_is_a_fetch_error() -> None:
    async with _client(_rpc_result({"chain": "main"})) as client:
        with pytest.raises(FetchError, match="malformed"):
            await client.fetch_chain_state()


@pytest.mark.asyncio
async def test_transport_failure_is_a_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(FetchError, match="transport error"):
            await client.fetch_chain_state()
        with pytest.raises(FetchError, match="transport error"):
            await client.fetch_fee_estimate()


@pytest.mark.asyncio
async def test_fetch_fee_estimate_reads_recommended_tiers() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert str(request.url) == _FEE_URL
        return httpx.Response(200, json=_FEES)

    async with _client(handler) as client:
        estimate = await client.fetch_fee_estimate()

    assert estimate.fastest_fee == 25
    assert estimate.half_hour_fee == 20
    assert estimate.hour_fee == 15
    assert estimate.economy_fee == 8
    assert estimate.minimum_fee == 4


@pytest.mark.asyncio
async def test_fee_estimate_failures_are_fetch_errors() -> None:
    responses = iter(
        [
            httpx.Response(503, text="busy"),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"fastestFee": 1}),
            httpx.Response(200, json={**_FEES, "minimumFee": -1}),
        ]
    )

    async with _client(lambda request: next(responses)) as client:
        for _ in range(4):
            with pytest.raises(FetchError) as excinfo:
                await client.fetch_fee_estimate()
            assert excinfo.value.operation == "fee_estimate"
